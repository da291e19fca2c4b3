# Overview: Estimations (quotes) frozen from carts, recalled into carts, converted by matching sales.

"""
Estimation lifecycle

    active -> converted   a completed sale for the same customer sells exactly
                          the same (product, variant, quantity) multiset
    active -> expired     expires_at has passed (expire_estimations)

An estimation is a copy of the cart: its lines are snapshot rows, so later
price changes or cart edits do not alter it. A cart recalled from an
estimation updates that estimation in place when it is estimated again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import Cart, CartLine, Estimation, EstimationLine
from ..models.estimations import (
    ESTIMATION_STATUS_ACTIVE,
    ESTIMATION_STATUS_CONVERTED,
    ESTIMATION_STATUS_EXPIRED,
)
from ..models.sales import CART_STATUS_ESTIMATED, CART_STATUS_OPEN
from .activity_service import append_activity
from .cart_service import cart_totals
from .concurrency import get_for_update, lock_for_update, run_with_retry
from .document_service import DOC_ESTIMATION, next_document_number
from modernpos.time_utils import days_after, normalize_now

logger = logging.getLogger(__name__)


class EstimationError(Exception):
    """Raised for estimation operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _line_key(line) -> tuple[int, int, int]:
    if isinstance(line, dict):
        product_id, variant_id, quantity = line.get("product_id"), line.get("variant_id"), line.get("quantity")
    else:
        product_id, variant_id, quantity = line.product_id, line.variant_id, line.quantity
    return (int(product_id), -1 if variant_id is None else int(variant_id), int(quantity))


def estimation_matches(estimation_lines: Iterable, cart_lines: Iterable) -> bool:
    """Exact multiset equality over (product_id, variant_id, quantity); no subset or superset matches."""
    return sorted(_line_key(l) for l in estimation_lines) == sorted(_line_key(l) for l in cart_lines)


def is_expired(estimation: Estimation, now: datetime | None = None) -> bool:
    if estimation.status == ESTIMATION_STATUS_EXPIRED:
        return True
    return estimation.expires_at is not None and (normalize_now(now)) > estimation.expires_at


def _snapshot_lines(totals) -> list[EstimationLine]:
    return [
        EstimationLine(
            product_id=p.item.product_id,
            variant_id=p.item.variant_id,
            product_name=p.item.product_name,
            variant_name=p.item.variant_name,
            quantity=p.item.quantity,
            unit_price_cents=p.unit_price_cents,
            item_discount_type=p.item.item_discount.type if p.item.item_discount else None,
            item_discount_value=p.item.item_discount.value if p.item.item_discount else None,
            effective_unit_price_cents=p.effective_unit_price_cents,
            line_total_cents=p.line_total_cents,
        )
        for p in totals.lines
    ]


def create_estimation(
    cart_id: int,
    notes: str | None = None,
    now: datetime | None = None,
    actor: str | None = None,
) -> Estimation:
    """
    Freeze the cart into an estimation and close the cart.

    If the cart was recalled from an active estimation, that estimation is
    updated in place (lines, totals, customer; notes when given) and keeps
    its number and expiry.
    """
    def _op():
        ts = normalize_now(now)
        cart = lock_for_update(db.session.query(Cart).filter_by(id=cart_id)).first()
        if cart is None:
            raise EstimationError("Cart not found", details={"cart_id": cart_id})
        if cart.status != CART_STATUS_OPEN:
            raise EstimationError(f"Cart is {cart.status}")
        if not cart.lines:
            raise EstimationError("Cannot create an estimation from an empty cart")

        totals = cart_totals(cart.id, ts)
        creator = actor or cart.cashier

        estimation = None
        if cart.recalled_estimation_id is not None:
            estimation = get_for_update(Estimation, cart.recalled_estimation_id)
            if estimation is not None and estimation.status != ESTIMATION_STATUS_ACTIVE:
                estimation = None

        if estimation is not None:
            estimation.lines.clear()
            db.session.flush()
            estimation.lines.extend(_snapshot_lines(totals))
            estimation.updated_at = ts
            if notes:
                estimation.notes = notes
            action = "Estimation Updated"
        else:
            valid_days = current_app.config.get("ESTIMATION_VALID_DAYS", 7)
            estimation = Estimation(
                document_number=next_document_number(DOC_ESTIMATION),
                status=ESTIMATION_STATUS_ACTIVE,
                created_by=creator or "Unknown",
                created_at=ts,
                expires_at=days_after(ts, valid_days),
                notes=notes,
                lines=_snapshot_lines(totals),
            )
            db.session.add(estimation)
            action = "Estimation Created"

        estimation.customer_id = cart.customer_id
        estimation.subtotal_cents = totals.subtotal_cents
        estimation.discount_cents = totals.discount_cents
        estimation.tax_cents = totals.tax_cents
        estimation.total_cents = totals.total_cents
        estimation.tax_policy = totals.tax_policy
        db.session.flush()

        customer_name = cart.customer.name if cart.customer else "Walk-in Customer"
        append_activity(
            category="estimation",
            action=action,
            description=f"Estimation {estimation.document_number} for {customer_name}",
            actor=creator,
            reference=estimation.document_number,
            amount_cents=estimation.total_cents,
            occurred_at=ts,
            payload={"items": len(estimation.lines), "notes": estimation.notes or ""},
        )

        cart.status = CART_STATUS_ESTIMATED
        cart.updated_at = ts
        db.session.commit()
        return estimation

    return run_with_retry(_op)


def recall_estimation(estimation_id: int, cashier: str | None = None, now: datetime | None = None) -> Cart:
    """Open a new cart with the estimation's lines and customer; no order discount carries over."""
    estimation = db.session.get(Estimation, estimation_id)
    if estimation is None:
        raise EstimationError("Estimation not found", details={"estimation_id": estimation_id})
    if estimation.status != ESTIMATION_STATUS_ACTIVE or is_expired(estimation, now):
        raise EstimationError("Only active, unexpired estimations can be recalled")

    cart = Cart(
        status=CART_STATUS_OPEN,
        cashier=cashier or "Unknown",
        customer_id=estimation.customer_id,
        recalled_estimation_id=estimation.id,
    )
    for line in estimation.lines:
        cart.lines.append(CartLine(
            product_id=line.product_id,
            variant_id=line.variant_id,
            quantity=line.quantity,
            item_discount_type=line.item_discount_type,
            item_discount_value=line.item_discount_value,
        ))
    db.session.add(cart)
    db.session.commit()
    return cart


def delete_estimation(estimation_id: int) -> bool:
    estimation = db.session.get(Estimation, estimation_id)
    if estimation is None:
        return False
    if estimation.status == ESTIMATION_STATUS_CONVERTED:
        raise EstimationError("Converted estimations are kept with their sale")
    db.session.query(Cart).filter(Cart.recalled_estimation_id == estimation.id).update(
        {Cart.recalled_estimation_id: None}, synchronize_session=False
    )
    db.session.delete(estimation)
    db.session.commit()
    return True


def expire_estimations(now: datetime | None = None) -> int:
    """Flip active estimations past their expiry to expired; returns how many changed."""
    ts = normalize_now(now)
    stale = (
        db.session.query(Estimation)
        .filter(
            Estimation.status == ESTIMATION_STATUS_ACTIVE,
            Estimation.expires_at.isnot(None),
            Estimation.expires_at < ts,
        )
        .all()
    )
    for estimation in stale:
        estimation.status = ESTIMATION_STATUS_EXPIRED
        estimation.updated_at = ts
    db.session.commit()
    if stale:
        logger.info("Expired %d estimation(s)", len(stale))
    return len(stale)


def list_estimations(status: str | None = None, customer_id: int | None = None) -> list[Estimation]:
    q = db.session.query(Estimation)
    if status:
        q = q.filter(Estimation.status == status)
    if customer_id is not None:
        q = q.filter(Estimation.customer_id == customer_id)
    return q.order_by(Estimation.created_at.desc(), Estimation.id.desc()).all()


def get_estimation(estimation_id: int) -> Estimation | None:
    return db.session.get(Estimation, estimation_id)


def convert_matching_estimations(customer_id: int | None, sold_lines: Iterable, transaction_id: int,
                                 now: datetime | None = None) -> list[Estimation]:
    """
    Mark the customer's active estimations that match a completed sale as converted.

    Runs inside the checkout transaction (flush only). Sales without a
    customer never convert anything.
    """
    if customer_id is None:
        return []
    ts = normalize_now(now)
    sold_lines = list(sold_lines)
    candidates = lock_for_update(
        db.session.query(Estimation).filter(
            Estimation.customer_id == customer_id,
            Estimation.status == ESTIMATION_STATUS_ACTIVE,
        )
    ).all()

    converted = []
    for estimation in candidates:
        if is_expired(estimation, ts):
            continue
        if estimation_matches(estimation.lines, sold_lines):
            estimation.status = ESTIMATION_STATUS_CONVERTED
            estimation.converted_transaction_id = transaction_id
            estimation.updated_at = ts
            converted.append(estimation)
    db.session.flush()
    return converted
