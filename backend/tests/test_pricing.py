from types import SimpleNamespace

import pytest

from modernpos.services.discount_service import discount_amount_cents
from modernpos.services.pricing_service import (
    TAX_POLICY_PER_ITEM_INCLUSIVE,
    ItemDiscount,
    LineItem,
    compute_totals,
    effective_unit_price,
    line_total,
    percent_of,
    subtotal,
    tax_amount,
)


def _discount(discount_type, value, max_discount_cents=None):
    return SimpleNamespace(discount_type=discount_type, discount_value=value, max_discount_cents=max_discount_cents)


def test_flat_tax_on_plain_cart():
    items = [LineItem(product_id=1, quantity=2, base_price_cents=1000)]

    totals = compute_totals(items)

    assert totals.subtotal_cents == 2000
    assert totals.discount_cents == 0
    assert totals.tax_cents == 160
    assert totals.total_cents == 2160


def test_percentage_item_discount_halves_the_line():
    item = LineItem(
        product_id=1,
        quantity=2,
        base_price_cents=1000,
        item_discount=ItemDiscount(type="percentage", value=5000),
    )

    assert effective_unit_price(item) == 500
    assert line_total(item) == 1000


def test_percentage_order_discount_is_capped():
    assert discount_amount_cents(_discount("percentage", 2000, max_discount_cents=300), 5000) == 300
    assert discount_amount_cents(_discount("percentage", 2000), 5000) == 1000


def test_variant_modifier_and_fixed_item_discount():
    item = LineItem(
        product_id=1,
        quantity=3,
        base_price_cents=1500,
        price_modifier_cents=200,
        variant_id=7,
        item_discount=ItemDiscount(type="fixed", value=700),
    )

    assert effective_unit_price(item) == 1000
    assert line_total(item) == 3000


@pytest.mark.parametrize("discount", [
    ItemDiscount(type="fixed", value=5000),
    ItemDiscount(type="percentage", value=10000),
    ItemDiscount(type="percentage", value=25000),
])
def test_effective_price_never_negative(discount):
    item = LineItem(product_id=1, quantity=1, base_price_cents=999, item_discount=discount)
    assert effective_unit_price(item) == 0


def test_subtotal_is_sum_of_line_totals():
    items = [
        LineItem(product_id=1, quantity=2, base_price_cents=333),
        LineItem(product_id=2, quantity=1, base_price_cents=1250, item_discount=ItemDiscount("percentage", 1500)),
        LineItem(product_id=3, quantity=4, base_price_cents=99, item_discount=ItemDiscount("fixed", 150)),
    ]
    assert subtotal(items) == sum(line_total(i) for i in items)
    assert all(line_total(i) >= 0 for i in items)


@pytest.mark.parametrize("subtotal_cents", [0, 1, 299, 300, 1500, 100000])
def test_fixed_discount_bounded_by_subtotal(subtotal_cents):
    amount = discount_amount_cents(_discount("fixed", 1500), subtotal_cents)
    assert 0 <= amount <= subtotal_cents
    assert amount == min(1500, subtotal_cents)


@pytest.mark.parametrize("subtotal_cents", [1, 999, 5000, 123457])
def test_capped_percentage_never_exceeds_cap(subtotal_cents):
    assert discount_amount_cents(_discount("percentage", 3300, max_discount_cents=250), subtotal_cents) <= 250


def test_percent_of_rounds_half_up():
    assert percent_of(1005, 5000) == 503
    assert percent_of(1, 5000) == 1
    assert percent_of(1, 4999) == 0
    assert percent_of(-1005, 5000) == -503


def test_order_discount_applies_before_flat_tax():
    items = [LineItem(product_id=1, quantity=1, base_price_cents=5000)]

    totals = compute_totals(items, _discount("percentage", 2000, max_discount_cents=300))

    assert totals.discount_cents == 300
    assert totals.discounted_subtotal_cents == 4700
    assert totals.tax_cents == 376
    assert totals.total_cents == 5076


def test_per_item_inclusive_tax_only_taxes_flagged_products():
    rates = {1: 1800, 2: 500}
    items = [
        LineItem(product_id=1, quantity=2, base_price_cents=1000, tax_group_id=1, tax_inclusive=True),
        LineItem(product_id=2, quantity=1, base_price_cents=1000, tax_group_id=2, tax_inclusive=False),
        LineItem(product_id=3, quantity=1, base_price_cents=999, tax_group_id=2, tax_inclusive=True),
    ]

    totals = compute_totals(items, tax_policy=TAX_POLICY_PER_ITEM_INCLUSIVE, tax_rate_for=rates.get)

    assert [line.tax_cents for line in totals.lines] == [360, 0, 50]
    assert totals.tax_cents == 410
    assert totals.total_cents == totals.discounted_subtotal_cents + 410


def test_per_item_tax_without_a_rate_is_zero():
    items = [LineItem(product_id=1, quantity=1, base_price_cents=1000, tax_group_id=9, tax_inclusive=True)]
    assert tax_amount(items, 1000, tax_policy=TAX_POLICY_PER_ITEM_INCLUSIVE, tax_rate_for=lambda _g: None) == 0


def test_unknown_tax_policy_is_rejected():
    with pytest.raises(ValueError):
        compute_totals([], tax_policy="vat")
