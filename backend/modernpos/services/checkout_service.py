# Overview: Checkout; turns an open cart into an immutable Transaction in one DB transaction.

"""
Checkout control flow (authoritative)

complete_checkout() runs, inside a single DB transaction:

    1. lock the cart, its products and variants (re-read from the DB)
    2. price the cart (pricing_service.compute_totals)
    3. re-validate the applied discount against the locked row
    4. validate tenders (split tender; the sum must cover the total;
       overpayment only with a cash tender, returned as change)
    5. re-check stock: per product (all lines) and per variant
    6. snapshot the cart into Transaction / TransactionLine rows
    7. post the sale to the stock ledger
    8. credit the customer (loyalty points, spend, last visit)
    9. record one discount usage
   10. convert matching estimations
   11. credit the cashier's open shift
   12. append the activity event, mark the cart checked_out, commit

Any failure before the commit rolls everything back: no stock moves, no
usage is burned, no transaction number is consumed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Cart, Discount, Product, ProductVariant, Transaction, TransactionLine, TransactionPayment
from ..models.sales import CART_STATUS_CHECKED_OUT, CART_STATUS_OPEN
from .activity_service import append_activity
from .cart_service import cart_items, pricing_options
from .concurrency import get_for_update, lock_for_update, run_with_retry
from .customer_service import record_purchase
from .discount_service import record_usage, validate_discount
from .document_service import DOC_TRANSACTION, next_document_number
from .estimation_service import convert_matching_estimations
from .inventory_service import apply_sale_movement
from .pricing_service import compute_totals, subtotal
from .shift_service import get_open_shift, record_sale
from modernpos.time_utils import normalize_now

logger = logging.getLogger(__name__)

CASH_TENDER = "cash"


class CheckoutError(Exception):
    """Raised when a cart cannot be checked out."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def validate_payments(payments: list[dict], total_cents: int, tender_types=None) -> tuple[list[tuple[str, int]], int, int]:
    """
    Check a split-tender payment list against the amount due.

    Tenders are taken in order. Each amount must be positive. A non-cash
    tender may not exceed what is still due; a cash tender may, and the
    excess is change. Nothing may be tendered once the total is covered.

    Returns (tenders, total_paid_cents, change_due_cents).
    """
    allowed = tuple(tender_types) if tender_types else None
    tenders: list[tuple[str, int]] = []
    paid = 0
    change = 0

    for payment in payments or []:
        tender_type = (payment.get("tender_type") or payment.get("type") or "").strip()
        amount = payment.get("amount_cents")
        if allowed is not None and tender_type not in allowed:
            raise CheckoutError(f"Unsupported tender type: {tender_type}", details={"allowed": list(allowed)})
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise CheckoutError("Payment amount must be a positive integer", details={"amount_cents": amount})

        remaining = total_cents - paid
        if remaining <= 0:
            raise CheckoutError("Payment already covers the total", details={"tender_type": tender_type})
        if amount > remaining:
            if tender_type != CASH_TENDER:
                raise CheckoutError(
                    "Payment amount exceeds the remaining balance",
                    details={"tender_type": tender_type, "amount_cents": amount, "remaining_cents": remaining},
                )
            change = amount - remaining

        tenders.append((tender_type, amount))
        paid += amount

    if paid < total_cents:
        raise CheckoutError(
            "Payment does not cover the total",
            details={"total_cents": total_cents, "paid_cents": paid, "remaining_cents": total_cents - paid},
        )
    return tenders, paid, change


def _check_stock(cart: Cart) -> None:
    product_qty: dict[int, int] = {}
    variant_qty: dict[int, int] = {}
    for line in cart.lines:
        product_qty[line.product_id] = product_qty.get(line.product_id, 0) + line.quantity
        if line.variant_id is not None:
            variant_qty[line.variant_id] = variant_qty.get(line.variant_id, 0) + line.quantity

    insufficient = []
    for product_id in sorted(product_qty):
        product = get_for_update(Product, product_id)
        if product is None or not product.is_active:
            raise CheckoutError("Product no longer available", details={"product_id": product_id})
        if (product.stock or 0) < product_qty[product_id]:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": product_qty[product_id],
                "on_hand": product.stock,
            })
    for variant_id in sorted(variant_qty):
        variant = get_for_update(ProductVariant, variant_id)
        if variant is None:
            raise CheckoutError("Variant no longer available", details={"variant_id": variant_id})
        if (variant.stock or 0) < variant_qty[variant_id]:
            insufficient.append({
                "product_id": variant.product_id,
                "variant_id": variant_id,
                "requested_quantity": variant_qty[variant_id],
                "on_hand": variant.stock,
            })

    if insufficient:
        raise CheckoutError("Insufficient stock to complete the sale", details={"items": insufficient})


def complete_checkout(
    cart_id: int,
    payments: list[dict],
    cashier: str | None = None,
    now: datetime | None = None,
) -> Transaction:
    def _op():
        ts = normalize_now(now)
        config = current_app.config

        cart = lock_for_update(db.session.query(Cart).filter_by(id=cart_id)).first()
        if cart is None:
            raise CheckoutError("Cart not found", details={"cart_id": cart_id})
        if cart.status != CART_STATUS_OPEN:
            raise CheckoutError(f"Cart is {cart.status}", details={"cart_id": cart_id})
        if not cart.lines:
            raise CheckoutError("Cart is empty")
        actor = cashier or cart.cashier

        _check_stock(cart)
        items = cart_items(cart)

        discount = None
        if cart.discount_id is not None:
            discount = get_for_update(Discount, cart.discount_id)
            outcome = validate_discount(discount, ts, subtotal(items))
            if not outcome:
                raise CheckoutError(outcome.message, details=outcome.to_dict())

        totals = compute_totals(items, discount, **pricing_options())
        tenders, paid, change = validate_payments(
            payments, totals.total_cents, config.get("PAYMENT_TENDER_TYPES")
        )

        shift = get_open_shift(actor)
        txn = Transaction(
            document_number=next_document_number(DOC_TRANSACTION),
            type="sale",
            status="completed",
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            tax_policy=totals.tax_policy,
            total_paid_cents=paid,
            change_due_cents=change,
            discount_id=discount.id if discount is not None else None,
            discount_code=discount.code if discount is not None else None,
            customer_id=cart.customer_id,
            cashier=actor,
            cart_id=cart.id,
            shift_id=shift.id if shift is not None else None,
            occurred_at=ts,
        )
        for priced in totals.lines:
            item = priced.item
            txn.lines.append(TransactionLine(
                product_id=item.product_id,
                variant_id=item.variant_id,
                product_name=item.product_name,
                variant_name=item.variant_name,
                quantity=item.quantity,
                unit_price_cents=priced.unit_price_cents,
                item_discount_type=item.item_discount.type if item.item_discount else None,
                item_discount_value=item.item_discount.value if item.item_discount else None,
                effective_unit_price_cents=priced.effective_unit_price_cents,
                line_total_cents=priced.line_total_cents,
                tax_cents=priced.tax_cents,
            ))
        for tender_type, amount in tenders:
            txn.payments.append(TransactionPayment(tender_type=tender_type, amount_cents=amount))
        db.session.add(txn)
        db.session.flush()

        apply_sale_movement(items, txn.document_number, actor=actor, now=ts, commit=False)

        if cart.customer_id is not None:
            record_purchase(
                cart.customer_id,
                totals.total_cents,
                ts,
                cents_per_point=config.get("LOYALTY_CENTS_PER_POINT", 100),
            )

        if discount is not None:
            record_usage(discount.id, commit=False)

        convert_matching_estimations(cart.customer_id, items, txn.id, ts)

        if shift is not None:
            record_sale(actor, totals.total_cents)

        append_activity(
            category="transaction",
            action="Sale Completed",
            description=f"Sale {txn.document_number}: {sum(i.quantity for i in items)} item(s)",
            actor=actor,
            reference=txn.document_number,
            amount_cents=txn.total_cents,
            occurred_at=ts,
            payload={
                "tenders": [t for t, _a in tenders],
                "discount_code": txn.discount_code,
                "customer_id": txn.customer_id,
            },
        )

        cart.status = CART_STATUS_CHECKED_OUT
        cart.updated_at = ts
        db.session.commit()
        logger.info("Checkout %s completed for cart %s (total %d)", txn.document_number, cart.id, txn.total_cents)
        return txn

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def get_transaction(transaction_id: int) -> Transaction | None:
    return db.session.get(Transaction, transaction_id)


def list_transactions(
    *,
    customer_id: int | None = None,
    cashier: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[Transaction]:
    q = db.session.query(Transaction)
    if customer_id is not None:
        q = q.filter(Transaction.customer_id == customer_id)
    if cashier:
        q = q.filter(Transaction.cashier == cashier)
    if start is not None:
        q = q.filter(Transaction.occurred_at >= start)
    if end is not None:
        q = q.filter(Transaction.occurred_at <= end)
    q = q.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
