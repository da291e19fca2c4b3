# Overview: Flask API routes for suppliers and purchase orders; parses input and returns JSON responses.

# backend/modernpos/routes/purchase_orders.py
"""
Purchasing routes.

LIFECYCLE:
    draft -> sent -> {partial, received}; cancel from anything but received.

Receiving is the only way a purchase order touches stock, and every
receipt is posted to the inventory ledger under the order's document number.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..services import purchase_order_service, supplier_service
from ..services.purchase_order_service import PurchaseOrderError
from ..validation import ConflictError, ValidationError, optional_int, require_int

purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api")


def _error(e: PurchaseOrderError):
    status = 404 if str(e).endswith("not found") else 400
    return {"error": str(e), "details": e.details}, status


# =============================================================================
# SUPPLIERS
# =============================================================================

@purchase_orders_bp.get("/suppliers")
def list_suppliers():
    suppliers = supplier_service.list_suppliers(active_only=request.args.get("active") == "1")
    return {"items": [s.to_dict() for s in suppliers], "count": len(suppliers)}


@purchase_orders_bp.get("/suppliers/<int:supplier_id>")
def get_supplier(supplier_id: int):
    supplier = supplier_service.get_supplier(supplier_id)
    if supplier is None:
        return {"error": "Supplier not found"}, 404
    return supplier.to_dict()


@purchase_orders_bp.post("/suppliers")
def create_supplier():
    payload = request.get_json(silent=True) or {}
    try:
        supplier = supplier_service.create_supplier(payload)
    except ConflictError as e:
        db.session.rollback()
        return {"error": str(e)}, 409
    except ValueError as e:
        db.session.rollback()
        return {"error": str(e)}, 400
    return supplier.to_dict(), 201


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

@purchase_orders_bp.get("/purchase-orders")
def list_purchase_orders():
    """
    Query params:
    - status: draft | sent | partial | received | cancelled (optional)
    - supplier_id: int (optional)
    - kind: standard | replacement (optional)
    """
    orders = purchase_order_service.list_purchase_orders(
        status=request.args.get("status"),
        supplier_id=request.args.get("supplier_id", type=int),
        kind=request.args.get("kind"),
    )
    return {"items": [po.to_dict() for po in orders], "count": len(orders)}


@purchase_orders_bp.get("/purchase-orders/<int:po_id>")
def get_purchase_order(po_id: int):
    po = purchase_order_service.get_purchase_order(po_id)
    if po is None:
        return {"error": "Purchase order not found"}, 404
    return po.to_dict()


@purchase_orders_bp.post("/purchase-orders")
def create_purchase_order():
    """
    Create a purchase order.

    Request body:
    {
        "supplier_id": int,
        "items": [{"product_id": int, "quantity": int, "unit_cost_cents": int}],
        "total_cost_cents": int (optional, defaults to the sum of the lines),
        "payment_mode": "pay_now" | "credit" (optional, default credit),
        "receive_now": bool (optional) - book everything into stock at once,
        "draft": bool (optional) - create in draft instead of sent,
        "notes": str (optional),
        "actor": str (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        supplier_id = require_int(payload, "supplier_id")
        total_cost_cents = optional_int(payload, "total_cost_cents")
    except ValidationError as e:
        return {"error": str(e)}, 400
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        return {"error": "items must be a non-empty list"}, 400

    try:
        po = purchase_order_service.create_purchase_order(
            supplier_id=supplier_id,
            items=items,
            total_cost_cents=total_cost_cents,
            notes=payload.get("notes"),
            payment_mode=payload.get("payment_mode") or "credit",
            receive_now=bool(payload.get("receive_now", False)),
            as_draft=bool(payload.get("draft", False)),
            actor=payload.get("actor"),
        )
    except PurchaseOrderError as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase order")
        return {"error": "Internal server error"}, 500
    return po.to_dict(), 201


@purchase_orders_bp.post("/purchase-orders/<int:po_id>/send")
def send_purchase_order(po_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        po = purchase_order_service.send_purchase_order(po_id, actor=payload.get("actor"))
    except PurchaseOrderError as e:
        db.session.rollback()
        return _error(e)
    return po.to_dict()


@purchase_orders_bp.post("/purchase-orders/<int:po_id>/cancel")
def cancel_purchase_order(po_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        po = purchase_order_service.cancel_purchase_order(po_id, actor=payload.get("actor"))
    except PurchaseOrderError as e:
        db.session.rollback()
        return _error(e)
    return po.to_dict()


@purchase_orders_bp.post("/purchase-orders/<int:po_id>/receive")
def receive_full(po_id: int):
    """Receive everything still open on the order."""
    payload = request.get_json(silent=True) or {}
    try:
        result = purchase_order_service.receive_full(po_id, actor=payload.get("actor"))
    except PurchaseOrderError as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive purchase order")
        return {"error": "Internal server error"}, 500
    return result.to_dict()


@purchase_orders_bp.post("/purchase-orders/<int:po_id>/receive-partial")
def receive_partial(po_id: int):
    """
    Record one delivery.

    Request body:
    {
        "items": [{"product_id": int, "received_qty": int, "damaged_qty": int,
                   "unit_cost_cents": int (optional)}],
        "actor": str (optional)
    }

    Damaged units produce a replacement purchase order, returned under
    "replacement".
    """
    payload = request.get_json(silent=True) or {}
    details = payload.get("items")
    if not isinstance(details, list) or not details:
        return {"error": "items must be a non-empty list"}, 400

    try:
        result = purchase_order_service.receive_partial(po_id, details, actor=payload.get("actor"))
    except PurchaseOrderError as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive purchase order")
        return {"error": "Internal server error"}, 500
    return result.to_dict()
