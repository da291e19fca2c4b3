import pytest

from modernpos.extensions import db
from modernpos.models import TaxGroup
from modernpos.services import cart_service, checkout_service, tax_service
from modernpos.services.tax_service import TaxError
from modernpos.validation import ConflictError

from conftest import make_product


@pytest.fixture
def per_item_tax(app):
    app.config.update(TAX_POLICY="perItemInclusive", TAX_COUNTRY="IN")
    return app


def test_lookup_without_a_country_uses_each_product_group(tax_groups):
    lookup = tax_service.tax_rate_lookup("")

    assert lookup(tax_groups["US"].id) == 800
    assert lookup(tax_groups["IN"].id) == 1800
    assert lookup(None) is None


def test_lookup_falls_back_to_the_first_group_of_the_selected_country(tax_groups):
    lookup = tax_service.tax_rate_lookup("IN")

    assert lookup(tax_groups["IN"].id) == 1800
    assert lookup(tax_groups["US"].id) == 1800
    assert lookup(None) == 1800


def test_lookup_for_a_country_without_groups_means_no_tax(tax_groups):
    lookup = tax_service.tax_rate_lookup("FR")

    assert lookup(tax_groups["US"].id) is None
    assert lookup(None) is None


def test_inactive_groups_are_ignored(tax_groups):
    gst = db.session.get(TaxGroup, tax_groups["IN"].id)
    gst.is_active = False
    db.session.commit()
    reduced = tax_service.create_tax_group(name="GST 12", country="IN", rate_bps=1200)

    lookup = tax_service.tax_rate_lookup("IN")

    assert lookup(gst.id) == 1200
    assert lookup(reduced.id) == 1200


def test_create_tax_group_rules(tax_groups):
    with pytest.raises(ConflictError):
        tax_service.create_tax_group(name="Standard", country="US", rate_bps=700)
    with pytest.raises(TaxError):
        tax_service.create_tax_group(name="Luxury", country="US", rate_bps=10001)
    with pytest.raises(TaxError):
        tax_service.create_tax_group(name="", country="US", rate_bps=100)
    assert [g.name for g in tax_service.list_tax_groups("IN")] == ["GST 18"]


def test_per_item_inclusive_cart_taxes_only_inclusive_lines(per_item_tax, tax_groups):
    shirt = make_product(sku="IN-1", name="Kurta", price_cents=1000,
                         tax_group_id=tax_groups["IN"].id, tax_inclusive=True)
    imported = make_product(sku="US-1", name="Sneaker", price_cents=2000,
                            tax_group_id=tax_groups["US"].id, tax_inclusive=True)
    exempt = make_product(sku="EX-1", name="Rice", price_cents=500)
    cart = cart_service.create_cart(cashier="alex")
    cart_service.add_to_cart(cart.id, shirt.id, quantity=2)
    cart_service.add_to_cart(cart.id, imported.id, quantity=1)
    cart_service.add_to_cart(cart.id, exempt.id, quantity=3)

    totals = cart_service.cart_totals(cart.id)

    assert totals.tax_policy == "perItemInclusive"
    assert [line.tax_cents for line in totals.lines] == [360, 360, 0]
    assert totals.subtotal_cents == 5500
    assert totals.tax_cents == 720
    assert totals.total_cents == 6220


def test_checkout_under_per_item_inclusive_tax(per_item_tax, tax_groups):
    shirt = make_product(sku="IN-1", name="Kurta", price_cents=1000,
                         tax_group_id=tax_groups["IN"].id, tax_inclusive=True)
    cart = cart_service.create_cart(cashier="alex")
    cart_service.add_to_cart(cart.id, shirt.id, quantity=2)

    txn = checkout_service.complete_checkout(cart.id, [{"tender_type": "card", "amount_cents": 2360}])

    assert txn.tax_policy == "perItemInclusive"
    assert (txn.subtotal_cents, txn.tax_cents, txn.total_cents) == (2000, 360, 2360)
    assert [line.tax_cents for line in txn.lines] == [360]
