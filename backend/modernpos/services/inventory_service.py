# Overview: Stock ledger; every stock change is paired with an append-only InventoryMovement.

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import case, func, or_

from ..extensions import db
from ..models import InventoryMovement, Product, ProductVariant, RemovalType, Supplier
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_RETURN, MOVEMENT_TYPES
from ..validation import ConflictError
from .activity_service import append_activity
from .concurrency import get_for_update, run_with_retry
from .document_service import DOC_RECEIPT, next_document_number
from modernpos.time_utils import normalize_now

"""
Inventory ledger invariants (authoritative)

Ledger:
- InventoryMovement rows are append-only; never updated or deleted.
- quantity is a positive magnitude; direction comes from type (in|out|return).
- Product.stock is a cached projection and must equal
      SUM(in) - SUM(out) + SUM(return)
  over that product's movements. It is maintained incrementally: every write
  to Product.stock happens here, next to the movement that explains it.

Variants:
- ProductVariant.stock is an independent counter. Sales, returns, receipts
  and stock adjustments that name a variant move both the product stock and
  the variant stock by the same amount.

Admission:
- apply_sale_movement trusts its caller: carts are admission-controlled and
  checkout re-checks stock under lock before calling it.
- Manual removals and stock adjustments refuse to take stock below zero.

Concurrency:
- Each operation locks the rows it reads (get_for_update) and runs its
  read-check-write-append sequence in one DB transaction. With commit=False
  the caller owns the transaction (checkout, purchase order receipt).
"""

logger = logging.getLogger(__name__)

SALE_REASON = "Sale"
RECEIPT_REASON = "Stock Receiving"
OPENING_STOCK_REASON = "Opening Stock"
ADJUSTMENT_REASON = "Stock Adjustment"


class InventoryError(Exception):
    """Raised for stock ledger errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _attr(item, name, default=None):
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InventoryError("quantity must be a positive integer", details={"quantity": quantity})
    return quantity


def _lock_product(product_id: int) -> Product:
    product = get_for_update(Product, product_id)
    if product is None:
        raise InventoryError("Product not found", details={"product_id": product_id})
    return product


def _lock_variant(product: Product, variant_id: int) -> ProductVariant:
    variant = get_for_update(ProductVariant, variant_id)
    if variant is None or variant.product_id != product.id:
        raise InventoryError(
            "Variant not found",
            details={"product_id": product.id, "variant_id": variant_id},
        )
    return variant


def _post_movement(
    product: Product,
    *,
    movement_type: str,
    quantity: int,
    reason: str,
    actor: str | None,
    occurred_at: datetime,
    reference: str | None = None,
    notes: str | None = None,
    variant_id: int | None = None,
    unit_cost_cents: int | None = None,
) -> InventoryMovement:
    """Append one movement and move the cached product stock by the same amount."""
    if movement_type not in MOVEMENT_TYPES:
        raise InventoryError(f"Unknown movement type: {movement_type}")

    movement = InventoryMovement(
        product_id=product.id,
        variant_id=variant_id,
        product_name=product.name,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        reference=reference,
        occurred_at=occurred_at,
        user=actor or "Unknown",
        notes=notes,
        unit_cost_cents=unit_cost_cents,
    )
    delta = -quantity if movement_type == MOVEMENT_OUT else quantity
    product.stock = (product.stock or 0) + delta
    db.session.add(movement)
    return movement


def _finish(op, commit: bool):
    """Run op in its own retried transaction, or inside the caller's."""
    if not commit:
        result = op()
        db.session.flush()
        return result

    def _op():
        result = op()
        db.session.commit()
        return result

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def apply_sale_movement(
    items: Iterable,
    transaction_ref: str,
    actor: str | None = None,
    now: datetime | None = None,
    *,
    commit: bool = True,
) -> list[InventoryMovement]:
    """
    Post one "out" movement per sold line.

    `items` are line items (LineItem, TransactionLine or dicts) carrying
    product_id, variant_id, variant_name and quantity. Lines of the same
    product add up against product.stock; a line with a variant also
    decrements that variant's stock.
    """
    items = list(items)

    def _op():
        occurred_at = normalize_now(now)
        products: dict[int, Product] = {}
        for product_id in sorted({_attr(i, "product_id") for i in items}):
            products[product_id] = _lock_product(product_id)

        movements = []
        for item in items:
            quantity = _require_quantity(_attr(item, "quantity"))
            product = products[_attr(item, "product_id")]
            variant_id = _attr(item, "variant_id")
            reason = SALE_REASON
            if variant_id is not None:
                variant = _lock_variant(product, variant_id)
                variant.stock = (variant.stock or 0) - quantity
                reason = f"{SALE_REASON} - {_attr(item, 'variant_name') or variant.name}"

            movements.append(_post_movement(
                product,
                movement_type=MOVEMENT_OUT,
                quantity=quantity,
                reason=reason,
                actor=actor,
                occurred_at=occurred_at,
                reference=transaction_ref,
                variant_id=variant_id,
            ))
        return movements

    return _finish(_op, commit)


def apply_return_movement(
    items: Iterable,
    reason: str,
    transaction_ref: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
    *,
    commit: bool = True,
) -> list[InventoryMovement]:
    """Put returned units back on the shelf; items carry product_id, quantity and an optional variant_id."""
    items = list(items)
    reason = (reason or "").strip()
    if not reason:
        raise InventoryError("Return reason is required")
    if not items:
        raise InventoryError("No items to return")

    def _op():
        occurred_at = normalize_now(now)
        movements = []
        for item in items:
            quantity = _require_quantity(_attr(item, "quantity"))
            product = _lock_product(_attr(item, "product_id"))
            variant_id = _attr(item, "variant_id")
            if variant_id is not None:
                variant = _lock_variant(product, variant_id)
                variant.stock = (variant.stock or 0) + quantity

            movements.append(_post_movement(
                product,
                movement_type=MOVEMENT_RETURN,
                quantity=quantity,
                reason=f"Return: {reason}",
                actor=actor,
                occurred_at=occurred_at,
                reference=transaction_ref,
                notes=f"Return processed - {reason}",
                variant_id=variant_id,
            ))

        total_units = sum(m.quantity for m in movements)
        append_activity(
            category="inventory",
            action="Return Processed",
            description=f"{total_units} unit(s) returned: {reason}",
            actor=actor,
            reference=transaction_ref,
            occurred_at=occurred_at,
        )
        return movements

    return _finish(_op, commit)


def apply_receipt_movement(
    supplier_id: int | None,
    items: Iterable,
    notes: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
    *,
    reference: str | None = None,
    commit: bool = True,
) -> list[InventoryMovement]:
    """
    Receive stock from a supplier.

    Each item (product_id, quantity, unit_cost_cents, optional variant_id)
    posts an "in" movement and sets the product's cost price to the received
    unit cost (last-in cost, no averaging). An item naming a variant also
    restocks that variant. Without a reference a receipt number is allocated.
    """
    items = list(items)
    if not items:
        raise InventoryError("No items to receive")

    def _op():
        occurred_at = normalize_now(now)
        supplier = None
        if supplier_id is not None:
            supplier = db.session.get(Supplier, supplier_id)
            if supplier is None:
                raise InventoryError("Supplier not found", details={"supplier_id": supplier_id})

        ref = reference or next_document_number(DOC_RECEIPT)
        movement_notes = notes
        if supplier is not None and not movement_notes:
            movement_notes = f"Received from {supplier.name}"

        movements = []
        for item in items:
            quantity = _require_quantity(_attr(item, "quantity"))
            unit_cost = _attr(item, "unit_cost_cents")
            if unit_cost is not None and unit_cost < 0:
                raise InventoryError("unit_cost_cents must be >= 0")
            product = _lock_product(_attr(item, "product_id"))
            if unit_cost is not None:
                product.cost_price_cents = unit_cost
            variant_id = _attr(item, "variant_id")
            reason = RECEIPT_REASON
            if variant_id is not None:
                variant = _lock_variant(product, variant_id)
                variant.stock = (variant.stock or 0) + quantity
                reason = f"{RECEIPT_REASON} - {variant.name}"

            movements.append(_post_movement(
                product,
                movement_type=MOVEMENT_IN,
                quantity=quantity,
                reason=reason,
                actor=actor,
                occurred_at=occurred_at,
                reference=ref,
                notes=movement_notes,
                variant_id=variant_id,
                unit_cost_cents=unit_cost,
            ))
        return movements

    return _finish(_op, commit)


def post_opening_stock(product: Product, quantity: int, actor: str | None = None,
                       now: datetime | None = None) -> InventoryMovement | None:
    """Explain a new product's initial stock with an "in" movement; caller commits."""
    product.stock = 0
    if not quantity:
        return None
    return _post_movement(
        product,
        movement_type=MOVEMENT_IN,
        quantity=_require_quantity(quantity),
        reason=OPENING_STOCK_REASON,
        actor=actor,
        occurred_at=normalize_now(now),
        unit_cost_cents=product.cost_price_cents,
    )


def removal_reason(removal_type_name: str, unit_type: str | None = None, unit_option: str | None = None) -> str:
    reason = removal_type_name.strip()
    if unit_type and unit_option:
        reason = f"{reason} ({unit_type}: {unit_option})"
    return reason


def apply_manual_removal(
    product_id: int,
    quantity: int,
    removal_type_name: str,
    *,
    unit_type: str | None = None,
    unit_option: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> InventoryMovement:
    """Take damaged/expired/... units out of stock; reason is the removal type name plus an optional unit label."""
    if not (removal_type_name or "").strip():
        raise InventoryError("Removal type is required")
    quantity = _require_quantity(quantity)

    def _op():
        occurred_at = normalize_now(now)
        product = _lock_product(product_id)
        if quantity > (product.stock or 0):
            raise InventoryError(
                "Cannot remove more than the current stock",
                details={"product_id": product.id, "stock": product.stock, "requested_quantity": quantity},
            )

        movement = _post_movement(
            product,
            movement_type=MOVEMENT_OUT,
            quantity=quantity,
            reason=removal_reason(removal_type_name, unit_type, unit_option),
            actor=actor,
            occurred_at=occurred_at,
            notes=notes,
        )
        append_activity(
            category="inventory",
            action="Stock Removed",
            description=f"{quantity} x {product.name} removed: {movement.reason}",
            actor=actor,
            status="warning",
            occurred_at=occurred_at,
        )
        logger.info("Removed %d x product %s (%s)", quantity, product.id, movement.reason)
        return movement

    return _finish(_op, commit)


def apply_stock_adjustment(
    product_id: int,
    new_stock: int,
    reason: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
    *,
    variant_id: int | None = None,
    commit: bool = True,
) -> InventoryMovement | None:
    """
    Set a product's stock to a counted figure; posts the difference, nothing when unchanged.

    With variant_id the count is for that variant: the variant is set to
    new_stock and the product total moves by the same difference.
    """
    if isinstance(new_stock, bool) or not isinstance(new_stock, int) or new_stock < 0:
        raise InventoryError("new_stock must be a non-negative integer", details={"new_stock": new_stock})

    def _op():
        product = _lock_product(product_id)
        label = (reason or "").strip() or ADJUSTMENT_REASON
        if variant_id is None:
            diff = new_stock - (product.stock or 0)
        else:
            variant = _lock_variant(product, variant_id)
            diff = new_stock - (variant.stock or 0)
            if (product.stock or 0) + diff < 0:
                raise InventoryError(
                    "Adjustment would take product stock below zero",
                    details={"product_id": product.id, "variant_id": variant_id, "stock": product.stock},
                )
            if diff != 0:
                variant.stock = new_stock
                label = f"{label} - {variant.name}"
        if diff == 0:
            return None
        return _post_movement(
            product,
            movement_type=MOVEMENT_IN if diff > 0 else MOVEMENT_OUT,
            quantity=abs(diff),
            reason=label,
            actor=actor,
            occurred_at=normalize_now(now),
            notes=notes,
            variant_id=variant_id,
        )

    return _finish(_op, commit)


def list_movements(
    product_id: int | None = None,
    movement_type: str | None = None,
    limit: int | None = None,
) -> list[InventoryMovement]:
    q = db.session.query(InventoryMovement)
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if movement_type is not None:
        if movement_type not in MOVEMENT_TYPES:
            raise InventoryError(f"Unknown movement type: {movement_type}")
        q = q.filter(InventoryMovement.type == movement_type)
    q = q.order_by(InventoryMovement.occurred_at.desc(), InventoryMovement.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_removal_movements() -> list[InventoryMovement]:
    """
    Out movements posted by a manual removal of a known type.

    A removal's reason is the type name alone or "<name> (<unit>: <option>)",
    so a name only matches whole: "Stock" does not pick up "Stock Adjustment".
    """
    names = [rt.name for rt in db.session.query(RemovalType).all()]
    if not names:
        return []
    clauses = []
    for name in names:
        clauses.append(InventoryMovement.reason == name)
        clauses.append(InventoryMovement.reason.like(f"{_like_escape(name)} (%", escape="\\"))
    return (
        db.session.query(InventoryMovement)
        .filter(InventoryMovement.type == MOVEMENT_OUT)
        .filter(or_(*clauses))
        .order_by(InventoryMovement.occurred_at.desc(), InventoryMovement.id.desc())
        .all()
    )


def _signed_sum():
    return func.coalesce(
        func.sum(
            case(
                (InventoryMovement.type == MOVEMENT_OUT, -InventoryMovement.quantity),
                else_=InventoryMovement.quantity,
            )
        ),
        0,
    )


def ledger_quantity(product_id: int) -> int:
    """Stock as derived from the movement ledger (in - out + return)."""
    q = db.session.query(_signed_sum()).filter(InventoryMovement.product_id == product_id)
    return int(q.scalar() or 0)


def verify_stock_projection() -> list[dict]:
    """Products whose cached stock disagrees with their movement ledger."""
    ledger = dict(
        db.session.query(InventoryMovement.product_id, _signed_sum())
        .group_by(InventoryMovement.product_id)
        .all()
    )
    mismatches = []
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        expected = int(ledger.get(product.id, 0) or 0)
        if (product.stock or 0) != expected:
            mismatches.append({
                "product_id": product.id,
                "sku": product.sku,
                "stock": product.stock,
                "ledger_quantity": expected,
            })
    return mismatches


def low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .filter(Product.stock <= Product.min_stock)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )


# Removal types

def list_removal_types(active_only: bool = False) -> list[RemovalType]:
    q = db.session.query(RemovalType)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(RemovalType.name.asc()).all()


def create_removal_type(*, name: str, description: str | None = None, is_active: bool = True) -> RemovalType:
    name = (name or "").strip()
    if not name:
        raise InventoryError("Removal type name is required")
    if db.session.query(RemovalType).filter_by(name=name).first():
        raise ConflictError(f"Removal type {name} already exists")
    removal_type = RemovalType(name=name, description=description, is_active=is_active)
    db.session.add(removal_type)
    db.session.commit()
    return removal_type


def update_removal_type(removal_type_id: int, patch: dict) -> RemovalType | None:
    removal_type = db.session.get(RemovalType, removal_type_id)
    if removal_type is None:
        return None
    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise InventoryError("Removal type name is required")
        clash = db.session.query(RemovalType).filter(
            RemovalType.name == name, RemovalType.id != removal_type_id
        ).first()
        if clash:
            raise ConflictError(f"Removal type {name} already exists")
        removal_type.name = name
    if "description" in patch:
        removal_type.description = patch["description"]
    if "is_active" in patch:
        removal_type.is_active = bool(patch["is_active"])
    db.session.commit()
    return removal_type


def delete_removal_type(removal_type_id: int) -> bool:
    removal_type = db.session.get(RemovalType, removal_type_id)
    if removal_type is None:
        return False
    db.session.delete(removal_type)
    db.session.commit()
    return True
