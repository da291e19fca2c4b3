# Overview: Cart pricing; derives unit prices, line totals, discount, tax and grand total.

"""
Pricing invariants (authoritative)

Every cart surface (register cart, checkout, receipt, estimation) prices
through compute_totals(), so the figures always agree.

Order of derivation:
    unit price      = product price + variant price modifier
    effective price = unit price less the single per-item discount, floored at 0
    line total      = effective price * quantity
    subtotal        = sum of line totals
    order discount  = discount_service.discount_amount_cents(discount, subtotal)
    discounted      = subtotal - order discount
    tax             = per TAX_POLICY (see tax_amount)
    total           = discounted + tax

Money is integer cents. Percentages are basis points (10000 = 100%) and are
rounded half-up to the cent once per line or once per order.

Preconditions: every quantity > 0. Callers turn a quantity <= 0 into line
removal before pricing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from .discount_service import discount_amount_cents


TAX_POLICY_FLAT = "flat8"
TAX_POLICY_PER_ITEM_INCLUSIVE = "perItemInclusive"
TAX_POLICIES = (TAX_POLICY_FLAT, TAX_POLICY_PER_ITEM_INCLUSIVE)

DEFAULT_FLAT_TAX_RATE_BPS = 800

ITEM_DISCOUNT_PERCENTAGE = "percentage"
ITEM_DISCOUNT_FIXED = "fixed"

BPS_SCALE = 10000

TaxRateLookup = Callable[[Optional[int]], Optional[int]]


def percent_of(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000, rounded half-up (away from zero) to the cent."""
    if amount_cents < 0:
        return -percent_of(-amount_cents, bps)
    return (amount_cents * bps + BPS_SCALE // 2) // BPS_SCALE


@dataclass(frozen=True)
class ItemDiscount:
    type: str  # percentage (bps) | fixed (cents)
    value: int


@dataclass(frozen=True)
class LineItem:
    """
    Immutable pricing view of one cart/transaction/estimation line.

    Built from live rows when a cart is priced; copied field by field when a
    cart is frozen, never shared with the cart.
    """
    product_id: int
    quantity: int
    base_price_cents: int
    price_modifier_cents: int = 0
    variant_id: Optional[int] = None
    product_name: str = ""
    variant_name: Optional[str] = None
    item_discount: Optional[ItemDiscount] = None
    tax_group_id: Optional[int] = None
    tax_inclusive: bool = False

    def key(self) -> tuple:
        return (self.product_id, self.variant_id, self.quantity)


@dataclass(frozen=True)
class PricedLine:
    item: LineItem
    unit_price_cents: int
    effective_unit_price_cents: int
    line_total_cents: int
    tax_cents: int = 0

    def to_dict(self) -> dict:
        item = self.item
        return {
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "product_name": item.product_name,
            "variant_name": item.variant_name,
            "quantity": item.quantity,
            "item_discount_type": item.item_discount.type if item.item_discount else None,
            "item_discount_value": item.item_discount.value if item.item_discount else None,
            "unit_price_cents": self.unit_price_cents,
            "effective_unit_price_cents": self.effective_unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "tax_cents": self.tax_cents,
        }


@dataclass(frozen=True)
class CartTotals:
    lines: tuple[PricedLine, ...]
    subtotal_cents: int
    discount_cents: int
    discounted_subtotal_cents: int
    tax_cents: int
    total_cents: int
    tax_policy: str

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "discounted_subtotal_cents": self.discounted_subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_policy": self.tax_policy,
        }


def line_item_from(product, variant=None, quantity: int = 1,
                   discount_type: str | None = None, discount_value: int | None = None) -> LineItem:
    """Pricing view of a product (+ variant) row; reads the row's current price."""
    item_discount = None
    if discount_type and discount_value:
        item_discount = ItemDiscount(type=discount_type, value=discount_value)
    return LineItem(
        product_id=product.id,
        quantity=quantity,
        base_price_cents=product.price_cents or 0,
        price_modifier_cents=(variant.price_modifier_cents or 0) if variant is not None else 0,
        variant_id=variant.id if variant is not None else None,
        product_name=product.name,
        variant_name=variant.name if variant is not None else None,
        item_discount=item_discount,
        tax_group_id=product.tax_group_id,
        tax_inclusive=bool(product.tax_inclusive),
    )


def variant_unit_price(item: LineItem) -> int:
    return item.base_price_cents + (item.price_modifier_cents or 0)


def effective_unit_price(item: LineItem) -> int:
    price = variant_unit_price(item)
    discount = item.item_discount
    if discount is not None and discount.value:
        if discount.type == ITEM_DISCOUNT_PERCENTAGE:
            price = price - percent_of(price, discount.value)
        elif discount.type == ITEM_DISCOUNT_FIXED:
            price = price - discount.value
        else:
            raise ValueError(f"unknown item discount type: {discount.type}")
    return max(0, price)


def line_total(item: LineItem) -> int:
    return effective_unit_price(item) * item.quantity


def subtotal(items: Iterable[LineItem]) -> int:
    return sum(line_total(item) for item in items)


def order_discount_amount(items: Sequence[LineItem], discount) -> int:
    if discount is None:
        return 0
    return discount_amount_cents(discount, subtotal(items))


def item_tax(item: LineItem, rate_bps: int | None) -> int:
    """Tax attributed to one tax-inclusive line; 0 when the product is not tax-inclusive."""
    if not item.tax_inclusive or not rate_bps:
        return 0
    return percent_of(line_total(item), rate_bps)


def tax_amount(
    items: Sequence[LineItem],
    discounted_subtotal_cents: int,
    *,
    tax_policy: str = TAX_POLICY_FLAT,
    flat_rate_bps: int = DEFAULT_FLAT_TAX_RATE_BPS,
    tax_rate_for: TaxRateLookup | None = None,
) -> int:
    """
    Tax for an order under the selected policy.

    flat8:            flat_rate_bps of the discounted subtotal, once per order.
    perItemInclusive: for tax-inclusive products only, the rate of the
                      product's tax group applied to its discounted line
                      price, summed per line.
    """
    if tax_policy == TAX_POLICY_FLAT:
        return percent_of(discounted_subtotal_cents, flat_rate_bps)
    if tax_policy == TAX_POLICY_PER_ITEM_INCLUSIVE:
        lookup = tax_rate_for or (lambda _group_id: None)
        return sum(item_tax(item, lookup(item.tax_group_id)) for item in items)
    raise ValueError(f"unknown tax policy: {tax_policy}")


def compute_totals(
    items: Sequence[LineItem],
    discount=None,
    *,
    tax_policy: str = TAX_POLICY_FLAT,
    flat_rate_bps: int = DEFAULT_FLAT_TAX_RATE_BPS,
    tax_rate_for: TaxRateLookup | None = None,
) -> CartTotals:
    if tax_policy not in TAX_POLICIES:
        raise ValueError(f"unknown tax policy: {tax_policy}")

    lookup = tax_rate_for or (lambda _group_id: None)
    priced: list[PricedLine] = []
    for item in items:
        line_tax = 0
        if tax_policy == TAX_POLICY_PER_ITEM_INCLUSIVE:
            line_tax = item_tax(item, lookup(item.tax_group_id))
        priced.append(PricedLine(
            item=item,
            unit_price_cents=variant_unit_price(item),
            effective_unit_price_cents=effective_unit_price(item),
            line_total_cents=line_total(item),
            tax_cents=line_tax,
        ))

    sub = sum(p.line_total_cents for p in priced)
    discount_cents = order_discount_amount(items, discount)
    discounted = sub - discount_cents

    if tax_policy == TAX_POLICY_FLAT:
        tax = percent_of(discounted, flat_rate_bps)
    else:
        tax = sum(p.tax_cents for p in priced)

    return CartTotals(
        lines=tuple(priced),
        subtotal_cents=sub,
        discount_cents=discount_cents,
        discounted_subtotal_cents=discounted,
        tax_cents=tax,
        total_cents=discounted + tax,
        tax_policy=tax_policy,
    )
