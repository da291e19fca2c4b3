# Overview: Register cart editing, stock admission control, discounts and held carts.

"""
Cart admission control (authoritative)

add_to_cart / update_quantity never raise for stock problems; they return
an Outcome and leave the cart untouched when ok is False:
- product_not_found / variant_not_found
- out_of_stock:         product stock is 0 (no variant selected)
- variant_out_of_stock: selected variant's stock is 0
- insufficient_stock:   the resulting line quantity exceeds the governing
                        stock figure (variant stock if a variant is
                        selected, else product stock)

The product and variant rows are re-read from the database before every
comparison; a figure cached on an earlier request is never trusted.

A quantity update to <= 0 removes the line. Updating a line that is not in
the cart is a no-op.

Discount codes applied here are validated only; usage is recorded when the
sale completes (checkout_service).
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Cart, CartLine, Customer, Product, ProductVariant
from ..models.sales import (
    CART_STATUS_HELD,
    CART_STATUS_OPEN,
    ITEM_DISCOUNT_FIXED,
    ITEM_DISCOUNT_PERCENTAGE,
)
from .activity_service import append_activity
from .concurrency import get_for_update, lock_for_update, run_with_retry
from .discount_service import get_discount_by_code, validate_discount
from .pricing_service import (
    DEFAULT_FLAT_TAX_RATE_BPS,
    TAX_POLICY_FLAT,
    TAX_POLICY_PER_ITEM_INCLUSIVE,
    CartTotals,
    LineItem,
    compute_totals,
    line_item_from,
    subtotal,
)
from .results import Outcome
from .tax_service import tax_rate_lookup
from modernpos.time_utils import normalize_now, utcnow


class CartError(Exception):
    """Raised for cart operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def pricing_options() -> dict:
    """Tax strategy keyword arguments for compute_totals, from app config."""
    config = current_app.config
    tax_policy = config.get("TAX_POLICY", TAX_POLICY_FLAT)
    options = {
        "tax_policy": tax_policy,
        "flat_rate_bps": config.get("FLAT_TAX_RATE_BPS", DEFAULT_FLAT_TAX_RATE_BPS),
        "tax_rate_for": None,
    }
    if tax_policy == TAX_POLICY_PER_ITEM_INCLUSIVE:
        options["tax_rate_for"] = tax_rate_lookup(config.get("TAX_COUNTRY", ""))
    return options


def _positive_int(value, name: str = "quantity") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise CartError(f"{name} must be a positive integer", details={name: value})
    return value


def _open_cart(cart_id: int) -> Cart:
    cart = lock_for_update(db.session.query(Cart).filter_by(id=cart_id)).first()
    if cart is None:
        raise CartError("Cart not found", details={"cart_id": cart_id})
    if cart.status != CART_STATUS_OPEN:
        raise CartError(f"Cart is {cart.status}", details={"cart_id": cart_id, "status": cart.status})
    return cart


def _touch(cart: Cart) -> None:
    cart.updated_at = utcnow()


def _governing_stock(product_id: int, variant_id: int | None):
    """
    Re-read the product (and variant) and return (Outcome-or-None, stock, product, variant).

    The Outcome is a failure when the rows are missing or out of stock.
    """
    product = get_for_update(Product, product_id)
    if product is None or not product.is_active:
        return Outcome.failure("product_not_found", "Product not found", product_id=product_id), 0, None, None

    variant = None
    if variant_id is not None:
        variant = get_for_update(ProductVariant, variant_id)
        if variant is None or variant.product_id != product.id:
            return (
                Outcome.failure("variant_not_found", "Variant not found", product_id=product_id, variant_id=variant_id),
                0, product, None,
            )
        if (variant.stock or 0) <= 0:
            return (
                Outcome.failure(
                    "variant_out_of_stock",
                    f"{product.name} - {variant.name} is out of stock",
                    product_id=product_id,
                    variant_id=variant_id,
                    available=variant.stock or 0,
                ),
                0, product, variant,
            )
        return None, variant.stock, product, variant

    if (product.stock or 0) <= 0:
        return (
            Outcome.failure("out_of_stock", f"{product.name} is out of stock", product_id=product_id, available=product.stock or 0),
            0, product, None,
        )
    return None, product.stock, product, None


def _insufficient(product: Product, variant: ProductVariant | None, requested: int, available: int) -> Outcome:
    label = product.name if variant is None else f"{product.name} - {variant.name}"
    return Outcome.failure(
        "insufficient_stock",
        f"Only {available} of {label} in stock",
        product_id=product.id,
        variant_id=variant.id if variant is not None else None,
        requested_quantity=requested,
        available=available,
    )


def create_cart(cashier: str | None = None, customer_id: int | None = None) -> Cart:
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise CartError("Customer not found", details={"customer_id": customer_id})
    cart = Cart(status=CART_STATUS_OPEN, cashier=cashier or "Unknown", customer_id=customer_id)
    db.session.add(cart)
    db.session.commit()
    return cart


def get_cart(cart_id: int) -> Cart | None:
    return db.session.get(Cart, cart_id)


def add_to_cart(cart_id: int, product_id: int, variant_id: int | None = None, quantity: int = 1) -> Outcome:
    """Add units of a product (or one of its variants); merges into an existing line."""
    quantity = _positive_int(quantity)

    def _op():
        cart = _open_cart(cart_id)
        rejected, available, product, variant = _governing_stock(product_id, variant_id)
        if rejected is not None:
            db.session.rollback()
            return rejected

        line = cart.find_line(product_id, variant_id)
        requested = quantity + (line.quantity if line is not None else 0)
        if requested > available:
            db.session.rollback()
            return _insufficient(product, variant, requested, available)

        if line is None:
            line = CartLine(product_id=product_id, variant_id=variant_id, quantity=quantity)
            cart.lines.append(line)
        else:
            line.quantity = requested
        _touch(cart)
        db.session.commit()
        return Outcome.success(line_id=line.id, quantity=line.quantity)

    return run_with_retry(_op)


def update_quantity(cart_id: int, product_id: int, variant_id: int | None, quantity: int) -> Outcome:
    """Set a line's quantity; <= 0 removes the line."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise CartError("quantity must be an integer", details={"quantity": quantity})

    def _op():
        cart = _open_cart(cart_id)
        line = cart.find_line(product_id, variant_id)
        if line is None:
            db.session.rollback()
            return Outcome.success("Line is not in the cart; nothing changed", changed=False)

        if quantity <= 0:
            cart.lines.remove(line)
            _touch(cart)
            db.session.commit()
            return Outcome.success(changed=True, removed=True)

        rejected, available, product, variant = _governing_stock(product_id, variant_id)
        if rejected is not None:
            db.session.rollback()
            return rejected
        if quantity > available:
            db.session.rollback()
            return _insufficient(product, variant, quantity, available)

        line.quantity = quantity
        _touch(cart)
        db.session.commit()
        return Outcome.success(changed=True, removed=False, quantity=quantity)

    return run_with_retry(_op)


def remove_from_cart(cart_id: int, product_id: int, variant_id: int | None = None) -> bool:
    cart = _open_cart(cart_id)
    line = cart.find_line(product_id, variant_id)
    if line is None:
        return False
    cart.lines.remove(line)
    _touch(cart)
    db.session.commit()
    return True


def set_item_discount(cart_id: int, product_id: int, variant_id: int | None,
                      discount_type: str, value: int) -> CartLine | None:
    """Attach the single per-item discount of a line (percentage in bps, fixed in cents)."""
    if discount_type not in (ITEM_DISCOUNT_PERCENTAGE, ITEM_DISCOUNT_FIXED):
        raise CartError("Item discount type must be percentage or fixed")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise CartError("Item discount value must be a non-negative integer")
    if discount_type == ITEM_DISCOUNT_PERCENTAGE and value > 10000:
        raise CartError("Percentage item discount cannot exceed 10000 basis points")

    cart = _open_cart(cart_id)
    line = cart.find_line(product_id, variant_id)
    if line is None:
        return None
    line.item_discount_type = discount_type
    line.item_discount_value = value
    _touch(cart)
    db.session.commit()
    return line


def clear_item_discount(cart_id: int, product_id: int, variant_id: int | None = None) -> CartLine | None:
    cart = _open_cart(cart_id)
    line = cart.find_line(product_id, variant_id)
    if line is None:
        return None
    line.item_discount_type = None
    line.item_discount_value = None
    _touch(cart)
    db.session.commit()
    return line


def set_customer(cart_id: int, customer_id: int | None) -> Cart:
    cart = _open_cart(cart_id)
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise CartError("Customer not found", details={"customer_id": customer_id})
    cart.customer_id = customer_id
    _touch(cart)
    db.session.commit()
    return cart


def cart_items(cart: Cart) -> list[LineItem]:
    """Pricing view of the cart at the products' current prices."""
    return [
        line_item_from(
            line.product,
            line.variant,
            quantity=line.quantity,
            discount_type=line.item_discount_type,
            discount_value=line.item_discount_value,
        )
        for line in cart.lines
    ]


def cart_totals(cart_id: int, now: datetime | None = None) -> CartTotals:
    """
    Totals as shown at the register.

    The applied discount only counts while it still validates against the
    current subtotal; checkout refuses a cart whose discount no longer does.
    """
    cart = get_cart(cart_id)
    if cart is None:
        raise CartError("Cart not found", details={"cart_id": cart_id})
    items = cart_items(cart)
    discount = cart.discount
    if discount is not None and not validate_discount(discount, normalize_now(now), subtotal(items)):
        discount = None
    return compute_totals(items, discount, **pricing_options())


def apply_discount_code(cart_id: int, code: str, now: datetime | None = None, actor: str | None = None) -> Outcome:
    cart = _open_cart(cart_id)
    discount = get_discount_by_code(code)
    items = cart_items(cart)
    outcome = validate_discount(discount, normalize_now(now), subtotal(items))
    if not outcome:
        db.session.rollback()
        return outcome

    cart.discount_id = discount.id
    _touch(cart)
    totals = compute_totals(items, discount, **pricing_options())
    append_activity(
        category="discount",
        action="Discount Applied",
        description=f"Code {discount.code} applied to cart {cart.id}",
        actor=actor or cart.cashier,
        reference=discount.code,
        amount_cents=totals.discount_cents,
    )
    db.session.commit()
    return Outcome.success(discount_code=discount.code, discount_cents=totals.discount_cents)


def remove_discount(cart_id: int) -> Cart:
    cart = _open_cart(cart_id)
    cart.discount_id = None
    _touch(cart)
    db.session.commit()
    return cart


def clear_cart(cart_id: int) -> Cart:
    """Empty the cart and drop its customer, discount and estimation link."""
    cart = _open_cart(cart_id)
    cart.lines.clear()
    cart.customer_id = None
    cart.discount_id = None
    cart.recalled_estimation_id = None
    _touch(cart)
    db.session.commit()
    return cart


def hold_cart(cart_id: int, now: datetime | None = None) -> Cart:
    """
    Park the cart for its customer.

    One held cart per customer: holding a newer cart discards the older one.
    """
    def _op():
        cart = _open_cart(cart_id)
        if cart.customer_id is None:
            raise CartError("Select a customer before holding the cart")
        if not cart.lines:
            raise CartError("Cannot hold an empty cart")

        older = (
            db.session.query(Cart)
            .filter(Cart.status == CART_STATUS_HELD, Cart.customer_id == cart.customer_id, Cart.id != cart.id)
            .all()
        )
        for old in older:
            db.session.delete(old)

        cart.status = CART_STATUS_HELD
        cart.held_at = normalize_now(now)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def list_held_carts() -> list[Cart]:
    return (
        db.session.query(Cart)
        .filter(Cart.status == CART_STATUS_HELD)
        .order_by(Cart.held_at.desc(), Cart.id.desc())
        .all()
    )


def recall_held_cart(customer_id: int, cashier: str | None = None) -> Cart | None:
    """Reopen the customer's held cart, if there is one."""
    def _op():
        cart = lock_for_update(
            db.session.query(Cart).filter(Cart.status == CART_STATUS_HELD, Cart.customer_id == customer_id)
        ).order_by(Cart.held_at.desc(), Cart.id.desc()).first()
        if cart is None:
            return None
        cart.status = CART_STATUS_OPEN
        cart.held_at = None
        if cashier:
            cart.cashier = cashier
        _touch(cart)
        db.session.commit()
        return cart

    return run_with_retry(_op)
