# Overview: Flask API routes for discount codes; parses input and returns JSON responses.

from flask import Blueprint, request

from ..extensions import db
from ..models import Discount
from ..services import discount_service
from ..services.discount_service import DiscountError
from ..validation import ConflictError, ModelValidationPolicy, ValidationError, require_int, validate_payload

DISCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code",
        "name",
        "discount_type",
        "discount_value",
        "max_discount_cents",
        "min_purchase_cents",
        "start_date",
        "end_date",
        "usage_limit",
        "is_active",
    },
    required_on_create={"code", "discount_type", "discount_value", "start_date", "end_date"},
)

discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.get("")
def list_discounts():
    discounts = discount_service.list_discounts(active_only=request.args.get("active") == "1")
    return {"items": [d.to_dict() for d in discounts], "count": len(discounts)}


@discounts_bp.get("/<int:discount_id>")
def get_discount(discount_id: int):
    discount = discount_service.get_discount(discount_id)
    if discount is None:
        return {"error": "Discount not found"}, 404
    return discount.to_dict()


@discounts_bp.post("")
def create_discount():
    """
    Create a discount code.

    Request body:
    {
        "code": str (stored upper-cased),
        "discount_type": "percentage" | "fixed",
        "discount_value": int (basis points for percentage, cents for fixed),
        "start_date": ISO-8601, "end_date": ISO-8601,
        "max_discount_cents": int (optional, percentage only),
        "min_purchase_cents": int (optional),
        "usage_limit": int (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Discount, payload=payload, policy=DISCOUNT_POLICY, partial=False)
        discount = discount_service.create_discount(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        db.session.rollback()
        return {"error": str(e)}, 409
    except DiscountError as e:
        db.session.rollback()
        return {"error": str(e), "details": e.details}, 400
    return discount.to_dict(), 201


@discounts_bp.patch("/<int:discount_id>")
def update_discount(discount_id: int):
    payload = request.get_json(silent=True) or {}
    if "code" in payload:
        return {"error": "code cannot be changed"}, 400
    try:
        patch = validate_payload(model=Discount, payload=payload, policy=DISCOUNT_POLICY, partial=True)
        discount = discount_service.update_discount(discount_id, patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except DiscountError as e:
        db.session.rollback()
        return {"error": str(e), "details": e.details}, 400
    if discount is None:
        return {"error": "Discount not found"}, 404
    return discount.to_dict()


@discounts_bp.delete("/<int:discount_id>")
def delete_discount(discount_id: int):
    """Delete an unused code; a redeemed code is deactivated instead."""
    if not discount_service.delete_discount(discount_id):
        return {"error": "Discount not found"}, 404
    return {"ok": True}, 200


@discounts_bp.post("/validate")
def validate_code():
    """
    Check a code against a subtotal without touching any cart.

    Request body: {"code": str, "subtotal_cents": int}
    """
    payload = request.get_json(silent=True) or {}
    try:
        subtotal_cents = require_int(payload, "subtotal_cents", minimum=0)
    except ValidationError as e:
        return {"error": str(e)}, 400

    discount = discount_service.get_discount_by_code(payload.get("code"))
    outcome = discount_service.validate_discount(discount, None, subtotal_cents)
    body = outcome.to_dict()
    body["discount_cents"] = discount_service.discount_amount_cents(discount, subtotal_cents) if outcome else 0
    return body
