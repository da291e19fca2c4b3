# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

# backend/modernpos/routes/inventory.py
"""
Inventory routes.

Every stock change goes through inventory_service and leaves an
InventoryMovement behind; there is no route that writes stock directly.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..models import Product
from ..services import inventory_service
from ..services.inventory_service import InventoryError
from ..validation import ConflictError, ValidationError, optional_int, require_int

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _error(e: InventoryError):
    status = 404 if str(e).endswith("not found") else 400
    return {"error": str(e), "details": e.details}, status


def _items(payload: dict) -> list[dict]:
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    cleaned = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("each item must be an object")
        cleaned.append({
            "product_id": require_int(raw, "product_id"),
            "variant_id": optional_int(raw, "variant_id"),
            "quantity": require_int(raw, "quantity", minimum=1),
            "unit_cost_cents": optional_int(raw, "unit_cost_cents"),
        })
    return cleaned


@inventory_bp.get("/movements")
def list_movements():
    """
    Movement ledger, newest first.

    Query params:
    - product_id: int (optional)
    - type: in | out | return (optional)
    - limit: int (optional)
    """
    try:
        movements = inventory_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("type"),
            limit=request.args.get("limit", type=int),
        )
    except InventoryError as e:
        return _error(e)
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


@inventory_bp.get("/products/<int:product_id>/ledger")
def product_ledger(product_id: int):
    product = db.session.get(Product, product_id)
    if product is None:
        return {"error": "Product not found"}, 404
    return {
        "product_id": product.id,
        "stock": product.stock,
        "ledger_quantity": inventory_service.ledger_quantity(product.id),
    }


@inventory_bp.get("/verify")
def verify():
    mismatches = inventory_service.verify_stock_projection()
    return {"ok": not mismatches, "mismatches": mismatches}


@inventory_bp.get("/low-stock")
def low_stock():
    products = inventory_service.low_stock_products()
    return {"items": [p.to_dict(include_variants=False) for p in products], "count": len(products)}


@inventory_bp.post("/receipts")
def receive_stock():
    """
    Receive stock from a supplier.

    Request body:
    {
        "supplier_id": int (optional),
        "items": [{"product_id": int, "quantity": int, "unit_cost_cents": int, "variant_id": int (optional)}],
        "notes": str (optional),
        "actor": str (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        items = _items(payload)
        supplier_id = optional_int(payload, "supplier_id")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        movements = inventory_service.apply_receipt_movement(
            supplier_id,
            items,
            notes=payload.get("notes"),
            actor=payload.get("actor"),
        )
    except InventoryError as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive stock")
        return {"error": "Internal server error"}, 500
    return {"items": [m.to_dict() for m in movements]}, 201


@inventory_bp.post("/returns")
def process_return():
    """
    Request body:
    {
        "items": [{"product_id": int, "quantity": int, "variant_id": int (optional)}],
        "reason": str,
        "transaction_ref": str (optional),
        "actor": str (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        items = _items(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        movements = inventory_service.apply_return_movement(
            items,
            payload.get("reason"),
            transaction_ref=payload.get("transaction_ref"),
            actor=payload.get("actor"),
        )
    except InventoryError as e:
        db.session.rollback()
        return _error(e)
    return {"items": [m.to_dict() for m in movements]}, 201


@inventory_bp.get("/removals")
def list_removals():
    movements = inventory_service.list_removal_movements()
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


@inventory_bp.post("/removals")
def remove_stock():
    """
    Request body:
    {
        "product_id": int,
        "quantity": int,
        "removal_type": str,
        "unit_type": str (optional), "unit_option": str (optional),
        "notes": str (optional),
        "actor": str (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id")
        quantity = require_int(payload, "quantity", minimum=1)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        movement = inventory_service.apply_manual_removal(
            product_id,
            quantity,
            payload.get("removal_type") or "",
            unit_type=payload.get("unit_type"),
            unit_option=payload.get("unit_option"),
            notes=payload.get("notes"),
            actor=payload.get("actor"),
        )
    except InventoryError as e:
        db.session.rollback()
        return _error(e)
    return movement.to_dict(), 201


@inventory_bp.post("/adjustments")
def adjust_stock():
    """
    Set a product's stock to a counted figure:
    {"product_id", "new_stock", "variant_id" (optional), "reason", "notes", "actor"}.
    With variant_id the figure is that variant's count.
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id")
        new_stock = require_int(payload, "new_stock", minimum=0)
        variant_id = optional_int(payload, "variant_id")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        movement = inventory_service.apply_stock_adjustment(
            product_id,
            new_stock,
            reason=payload.get("reason"),
            notes=payload.get("notes"),
            actor=payload.get("actor"),
            variant_id=variant_id,
        )
    except InventoryError as e:
        db.session.rollback()
        return _error(e)
    if movement is None:
        return {"ok": True, "changed": False}, 200
    return movement.to_dict(), 201


@inventory_bp.get("/removal-types")
def list_removal_types():
    types = inventory_service.list_removal_types(active_only=request.args.get("active") == "1")
    return {"items": [t.to_dict() for t in types], "count": len(types)}


@inventory_bp.post("/removal-types")
def create_removal_type():
    payload = request.get_json(silent=True) or {}
    try:
        removal_type = inventory_service.create_removal_type(
            name=payload.get("name"),
            description=payload.get("description"),
            is_active=bool(payload.get("is_active", True)),
        )
    except ConflictError as e:
        return {"error": str(e)}, 409
    except InventoryError as e:
        return _error(e)
    return removal_type.to_dict(), 201


@inventory_bp.patch("/removal-types/<int:removal_type_id>")
def update_removal_type(removal_type_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        removal_type = inventory_service.update_removal_type(removal_type_id, payload)
    except ConflictError as e:
        db.session.rollback()
        return {"error": str(e)}, 409
    except InventoryError as e:
        db.session.rollback()
        return _error(e)
    if removal_type is None:
        return {"error": "Removal type not found"}, 404
    return removal_type.to_dict()


@inventory_bp.delete("/removal-types/<int:removal_type_id>")
def delete_removal_type(removal_type_id: int):
    if not inventory_service.delete_removal_type(removal_type_id):
        return {"error": "Removal type not found"}, 404
    return {"ok": True}, 200
