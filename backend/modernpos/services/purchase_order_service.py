# Overview: Purchase orders through (partial) receipt, with replacement orders for damaged goods.

"""
Purchase Order Service

LIFECYCLE:
    draft -> sent -> {partial, received} -> received
    cancelled is terminal, reachable from any state except received.

RECEIPT TALLIES (per line):
- received_qty:            good units booked into stock so far
- damaged_qty:             damaged units reported so far
- replacement_pending_qty: damaged units a replacement order still owes

Status after a receipt: received iff every line has received_qty >= quantity
and no line has replacement_pending_qty > 0; otherwise partial.

DAMAGED GOODS: a partial receipt with damaged units spawns exactly one child
order (kind="replacement", parent_id=this order, status sent) holding the
damaged quantities at the original unit costs. Good units received on the
replacement settle the parent's pending quantities, up the chain. Receiving
an order in full, or cancelling it, cancels every open order below it; a
replacement is only receivable while its parent is still open.

Tallies never move past the ordered quantity: a receipt asking for more than
a line still has open is rejected as a whole.

Every receipt posts its good units through inventory_service in the same DB
transaction as the tally update; orders are locked while being received.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from ..extensions import db
from ..models import InventoryMovement, Product, PurchaseOrder, PurchaseOrderItem, Supplier
from ..models.purchasing import (
    PO_KIND_REPLACEMENT,
    PO_KIND_STANDARD,
    PO_STATUS_CANCELLED,
    PO_STATUS_DRAFT,
    PO_STATUS_PARTIAL,
    PO_STATUS_RECEIVED,
    PO_STATUS_SENT,
)
from .activity_service import append_activity
from .concurrency import get_for_update, run_with_retry
from .document_service import DOC_PURCHASE_ORDER, next_document_number
from .inventory_service import apply_receipt_movement
from modernpos.time_utils import normalize_now

logger = logging.getLogger(__name__)

PAYMENT_MODES = ("pay_now", "credit")
RECEIVABLE_STATUSES = (PO_STATUS_SENT, PO_STATUS_PARTIAL)
OPEN_STATUSES = (PO_STATUS_DRAFT, PO_STATUS_SENT, PO_STATUS_PARTIAL)


class PurchaseOrderError(Exception):
    """Raised for purchase order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class ReceiptResult:
    purchase_order: PurchaseOrder
    movements: list[InventoryMovement] = field(default_factory=list)
    replacement: PurchaseOrder | None = None

    def to_dict(self) -> dict:
        return {
            "purchase_order": self.purchase_order.to_dict(),
            "movements": [m.to_dict() for m in self.movements],
            "replacement": self.replacement.to_dict() if self.replacement else None,
        }


def _int_field(data: dict, key: str, *, default: int | None = None, minimum: int = 0) -> int:
    value = data.get(key)
    if value is None:
        value = default
    if isinstance(value, bool) or not isinstance(value, int):
        raise PurchaseOrderError(f"{key} must be an integer", details={key: value})
    if value < minimum:
        raise PurchaseOrderError(f"{key} must be >= {minimum}", details={key: value})
    return value


def _lock_order(po_id: int) -> PurchaseOrder:
    po = get_for_update(PurchaseOrder, po_id)
    if po is None:
        raise PurchaseOrderError("Purchase order not found", details={"purchase_order_id": po_id})
    return po


def _check_receivable(po: PurchaseOrder) -> None:
    if po.status not in RECEIVABLE_STATUSES:
        raise PurchaseOrderError(f"Cannot receive a purchase order with status {po.status}")
    if po.parent_id is not None:
        parent = db.session.get(PurchaseOrder, po.parent_id)
        if parent is not None and parent.status not in RECEIVABLE_STATUSES:
            raise PurchaseOrderError(
                f"Cannot receive a replacement order whose original is {parent.status}",
                details={"purchase_order_id": po.id, "parent_id": parent.id},
            )


def _cancel_open_replacements(po: PurchaseOrder, now: datetime) -> list[PurchaseOrder]:
    """Cancel every open order below this one in the replacement tree."""
    cancelled = []
    children = db.session.query(PurchaseOrder).filter_by(parent_id=po.id).order_by(PurchaseOrder.id).all()
    for child in children:
        if child.status in OPEN_STATUSES:
            child.status = PO_STATUS_CANCELLED
            child.cancelled_at = now
            cancelled.append(child)
        cancelled.extend(_cancel_open_replacements(child, now))
    return cancelled


def _recompute_status(po: PurchaseOrder, now: datetime) -> None:
    complete = all(
        item.received_qty >= item.quantity and item.replacement_pending_qty <= 0
        for item in po.items
    )
    if complete:
        po.status = PO_STATUS_RECEIVED
        po.received_at = po.received_at or now
    else:
        po.status = PO_STATUS_PARTIAL


def _new_order(
    *,
    supplier: Supplier,
    lines: list[tuple[Product, int, int]],
    status: str,
    kind: str,
    notes: str | None,
    payment_mode: str,
    actor: str | None,
    now: datetime,
    parent: PurchaseOrder | None = None,
    total_cost_cents: int | None = None,
) -> PurchaseOrder:
    po = PurchaseOrder(
        document_number=next_document_number(DOC_PURCHASE_ORDER),
        supplier_id=supplier.id,
        supplier_name=supplier.name,
        status=status,
        kind=kind,
        parent_id=parent.id if parent is not None else None,
        payment_mode=payment_mode,
        created_by=actor or "Unknown",
        created_at=now,
        notes=notes,
    )
    for product, quantity, unit_cost in lines:
        po.items.append(PurchaseOrderItem(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_cost_cents=unit_cost,
            received_qty=0,
            damaged_qty=0,
            replacement_pending_qty=0,
        ))
    computed = sum(q * c for _p, q, c in lines)
    po.total_cost_cents = computed if total_cost_cents is None else total_cost_cents
    db.session.add(po)
    db.session.flush()
    return po


def create_purchase_order(
    *,
    supplier_id: int,
    items: list[dict],
    total_cost_cents: int | None = None,
    notes: str | None = None,
    payment_mode: str = "credit",
    receive_now: bool = False,
    as_draft: bool = False,
    actor: str | None = None,
    now: datetime | None = None,
) -> PurchaseOrder:
    """
    Create a purchase order in "sent" (or "draft") state.

    With receive_now the order is created "received" and the full item list
    is posted to the stock ledger at once.

    items: [{product_id, quantity, unit_cost_cents}, ...]; one line per product.
    """
    if receive_now and as_draft:
        raise PurchaseOrderError("A draft purchase order cannot be received on creation")
    if payment_mode not in PAYMENT_MODES:
        raise PurchaseOrderError(f"payment_mode must be one of: {', '.join(PAYMENT_MODES)}")
    if not items:
        raise PurchaseOrderError("Purchase order needs at least one item")
    if total_cost_cents is not None and total_cost_cents < 0:
        raise PurchaseOrderError("total_cost_cents must be >= 0")

    def _op():
        ts = normalize_now(now)
        supplier = db.session.get(Supplier, supplier_id)
        if supplier is None:
            raise PurchaseOrderError("Supplier not found", details={"supplier_id": supplier_id})

        lines = []
        seen = set()
        for data in items:
            product_id = data.get("product_id")
            if product_id in seen:
                raise PurchaseOrderError("Duplicate product on purchase order", details={"product_id": product_id})
            seen.add(product_id)
            product = db.session.get(Product, product_id)
            if product is None:
                raise PurchaseOrderError("Product not found", details={"product_id": product_id})
            quantity = _int_field(data, "quantity", minimum=1)
            unit_cost = _int_field(data, "unit_cost_cents", default=product.cost_price_cents)
            lines.append((product, quantity, unit_cost))

        if receive_now:
            status = PO_STATUS_RECEIVED
        elif as_draft:
            status = PO_STATUS_DRAFT
        else:
            status = PO_STATUS_SENT

        po = _new_order(
            supplier=supplier,
            lines=lines,
            status=status,
            kind=PO_KIND_STANDARD,
            notes=notes,
            payment_mode=payment_mode,
            actor=actor,
            now=ts,
            total_cost_cents=total_cost_cents,
        )
        append_activity(
            category="inventory",
            action="PO Created",
            description=f"Purchase order {po.document_number} for {supplier.name}",
            actor=actor,
            reference=po.document_number,
            amount_cents=po.total_cost_cents,
            occurred_at=ts,
        )

        if receive_now:
            apply_receipt_movement(
                supplier.id,
                [
                    {"product_id": i.product_id, "quantity": i.quantity, "unit_cost_cents": i.unit_cost_cents}
                    for i in po.items
                ],
                notes=f"Purchase order {po.document_number}",
                actor=actor,
                now=ts,
                reference=po.document_number,
                commit=False,
            )
            for item in po.items:
                item.received_qty = item.quantity
            po.received_at = ts
            append_activity(
                category="inventory",
                action="PO Received",
                description=f"Purchase order {po.document_number} received on creation",
                actor=actor,
                reference=po.document_number,
                amount_cents=po.total_cost_cents,
                occurred_at=ts,
            )

        db.session.commit()
        return po

    return run_with_retry(_op)


def send_purchase_order(po_id: int, actor: str | None = None) -> PurchaseOrder:
    def _op():
        po = _lock_order(po_id)
        if po.status != PO_STATUS_DRAFT:
            raise PurchaseOrderError(f"Only draft purchase orders can be sent (status: {po.status})")
        po.status = PO_STATUS_SENT
        db.session.commit()
        return po

    return run_with_retry(_op)


def cancel_purchase_order(po_id: int, actor: str | None = None, now: datetime | None = None) -> PurchaseOrder:
    def _op():
        ts = normalize_now(now)
        po = _lock_order(po_id)
        if po.status in (PO_STATUS_RECEIVED, PO_STATUS_CANCELLED):
            raise PurchaseOrderError(f"Cannot cancel a purchase order with status {po.status}")
        po.status = PO_STATUS_CANCELLED
        po.cancelled_at = ts
        _cancel_open_replacements(po, ts)
        append_activity(
            category="inventory",
            action="PO Cancelled",
            description=f"Purchase order {po.document_number} cancelled",
            actor=actor,
            reference=po.document_number,
            status="warning",
            occurred_at=ts,
        )
        db.session.commit()
        return po

    return run_with_retry(_op)


def _settle_parent(po: PurchaseOrder, product_id: int, good_qty: int, now: datetime) -> None:
    """Credit good units received on a replacement order to the order it replaces."""
    if po.kind != PO_KIND_REPLACEMENT or po.parent_id is None or good_qty <= 0:
        return
    parent = _lock_order(po.parent_id)
    item = parent.find_item(product_id)
    if item is None:
        return
    settle = min(good_qty, item.replacement_pending_qty)
    if settle <= 0:
        return
    item.replacement_pending_qty -= settle
    item.received_qty += settle
    if parent.status != PO_STATUS_CANCELLED:
        _recompute_status(parent, now)
    _settle_parent(parent, product_id, settle, now)


def receive_full(po_id: int, actor: str | None = None, now: datetime | None = None) -> ReceiptResult:
    """
    Receive everything still open on an order.

    Posts the outstanding quantity of every line, marks each line fully
    received with no damage, and closes the order. Every replacement order
    still open below it, at any depth and including partially received ones,
    is cancelled since their units arrived here.
    """
    def _op():
        ts = normalize_now(now)
        po = _lock_order(po_id)
        _check_receivable(po)

        postings = [
            {"product_id": i.product_id, "quantity": i.outstanding_qty, "unit_cost_cents": i.unit_cost_cents}
            for i in po.items
            if i.outstanding_qty > 0
        ]
        movements = []
        if postings:
            movements = apply_receipt_movement(
                po.supplier_id,
                postings,
                notes=f"Purchase order {po.document_number}",
                actor=actor,
                now=ts,
                reference=po.document_number,
                commit=False,
            )

        for item in po.items:
            if po.kind == PO_KIND_REPLACEMENT and item.outstanding_qty > 0:
                _settle_parent(po, item.product_id, item.outstanding_qty, ts)
            item.received_qty = item.quantity
            item.damaged_qty = 0
            item.replacement_pending_qty = 0
        po.status = PO_STATUS_RECEIVED
        po.received_at = ts

        for child in _cancel_open_replacements(po, ts):
            logger.info("Replacement order %s cancelled by full receipt of %s", child.document_number, po.document_number)

        append_activity(
            category="inventory",
            action="PO Received",
            description=f"Purchase order {po.document_number} received in full",
            actor=actor,
            reference=po.document_number,
            amount_cents=po.total_cost_cents,
            occurred_at=ts,
        )
        db.session.commit()
        return ReceiptResult(purchase_order=po, movements=movements)

    return run_with_retry(_op)


def receive_partial(
    po_id: int,
    details: list[dict],
    actor: str | None = None,
    now: datetime | None = None,
) -> ReceiptResult:
    """
    Record one delivery against an order.

    details: [{product_id, received_qty, damaged_qty, unit_cost_cents?}, ...]
    Only lines named in details change. Good units are posted to the ledger
    at the given unit cost (the order line's cost when omitted).
    """
    if not details:
        raise PurchaseOrderError("No receipt details given")

    def _op():
        ts = normalize_now(now)
        po = _lock_order(po_id)
        _check_receivable(po)

        batch = []
        seen = set()
        for d in details:
            product_id = d.get("product_id")
            if product_id in seen:
                raise PurchaseOrderError("Product listed twice in receipt", details={"product_id": product_id})
            seen.add(product_id)

            item = po.find_item(product_id)
            if item is None:
                raise PurchaseOrderError(
                    "Product is not on this purchase order",
                    details={"product_id": product_id, "purchase_order_id": po.id},
                )
            good = _int_field(d, "received_qty", default=0)
            damaged = _int_field(d, "damaged_qty", default=0)
            unit_cost = _int_field(d, "unit_cost_cents", default=item.unit_cost_cents)
            if good == 0 and damaged == 0:
                continue

            open_qty = item.quantity - item.received_qty - item.replacement_pending_qty
            if good + damaged > open_qty:
                raise PurchaseOrderError(
                    "Receipt exceeds the quantity still open on this line",
                    details={
                        "product_id": product_id,
                        "ordered": item.quantity,
                        "received_qty": item.received_qty,
                        "replacement_pending_qty": item.replacement_pending_qty,
                        "requested": good + damaged,
                    },
                )
            batch.append((item, good, damaged, unit_cost))

        if not batch:
            raise PurchaseOrderError("Receipt has no quantities")

        postings = [
            {"product_id": item.product_id, "quantity": good, "unit_cost_cents": unit_cost}
            for item, good, _damaged, unit_cost in batch
            if good > 0
        ]
        movements = []
        if postings:
            movements = apply_receipt_movement(
                po.supplier_id,
                postings,
                notes=f"Purchase order {po.document_number}",
                actor=actor,
                now=ts,
                reference=po.document_number,
                commit=False,
            )

        for item, good, damaged, _unit_cost in batch:
            item.received_qty += good
            item.damaged_qty += damaged
            item.replacement_pending_qty += damaged
            _settle_parent(po, item.product_id, good, ts)

        _recompute_status(po, ts)

        replacement = None
        damaged_lines = [(item, damaged) for item, _good, damaged, _c in batch if damaged > 0]
        if damaged_lines:
            supplier = db.session.get(Supplier, po.supplier_id)
            lines = [
                (db.session.get(Product, item.product_id), damaged, item.unit_cost_cents)
                for item, damaged in damaged_lines
            ]
            replacement = _new_order(
                supplier=supplier,
                lines=lines,
                status=PO_STATUS_SENT,
                kind=PO_KIND_REPLACEMENT,
                notes=f"Replacement for {po.document_number}",
                payment_mode=po.payment_mode,
                actor=actor,
                now=ts,
                parent=po,
            )
            logger.info(
                "Replacement order %s created for %s (%d damaged unit(s))",
                replacement.document_number,
                po.document_number,
                sum(d for _i, d in damaged_lines),
            )
            append_activity(
                category="inventory",
                action="Replacement Invoice Created",
                description=f"Replacement {replacement.document_number} for damaged goods on {po.document_number}",
                actor=actor,
                reference=replacement.document_number,
                amount_cents=replacement.total_cost_cents,
                status="warning",
                occurred_at=ts,
            )

        action = "PO Received" if po.status == PO_STATUS_RECEIVED else "PO Partially Received"
        append_activity(
            category="inventory",
            action=action,
            description=f"Purchase order {po.document_number}: {sum(b[1] for b in batch)} good, "
                        f"{sum(b[2] for b in batch)} damaged",
            actor=actor,
            reference=po.document_number,
            occurred_at=ts,
        )

        db.session.commit()
        return ReceiptResult(purchase_order=po, movements=movements, replacement=replacement)

    return run_with_retry(_op)


def get_purchase_order(po_id: int) -> PurchaseOrder | None:
    return db.session.get(PurchaseOrder, po_id)


def list_purchase_orders(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    kind: str | None = None,
) -> list[PurchaseOrder]:
    q = db.session.query(PurchaseOrder)
    if status:
        q = q.filter(PurchaseOrder.status == status)
    if supplier_id is not None:
        q = q.filter(PurchaseOrder.supplier_id == supplier_id)
    if kind:
        q = q.filter(PurchaseOrder.kind == kind)
    return q.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()
