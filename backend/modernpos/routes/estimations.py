# Overview: Flask API routes for estimations (quotes); parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..extensions import db
from ..services import cart_service, estimation_service
from ..services.estimation_service import EstimationError

estimations_bp = Blueprint("estimations", __name__, url_prefix="/api/estimations")


def _error(e: EstimationError):
    status = 404 if str(e).endswith("not found") else 400
    return {"error": str(e), "details": e.details}, status


@estimations_bp.get("")
def list_estimations():
    """
    Query params:
    - status: active | converted | expired (optional)
    - customer_id: int (optional)
    """
    estimations = estimation_service.list_estimations(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
    )
    return {"items": [e.to_dict() for e in estimations], "count": len(estimations)}


@estimations_bp.get("/<int:estimation_id>")
def get_estimation(estimation_id: int):
    estimation = estimation_service.get_estimation(estimation_id)
    if estimation is None:
        return {"error": "Estimation not found"}, 404
    return estimation.to_dict()


@estimations_bp.post("")
def create_estimation():
    """
    Freeze a cart into an estimation.

    Request body: {"cart_id": int, "notes": str (optional), "actor": str (optional)}

    A cart recalled from an active estimation updates that estimation
    instead of creating a new one.
    """
    payload = request.get_json(silent=True) or {}
    cart_id = payload.get("cart_id")
    if isinstance(cart_id, bool) or not isinstance(cart_id, int):
        return {"error": "cart_id must be an integer"}, 400

    try:
        estimation = estimation_service.create_estimation(
            cart_id, notes=payload.get("notes"), actor=payload.get("actor")
        )
    except EstimationError as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create estimation")
        return {"error": "Internal server error"}, 500
    return estimation.to_dict(), 201


@estimations_bp.post("/<int:estimation_id>/recall")
def recall_estimation(estimation_id: int):
    """Open a new cart from the estimation; returns the cart with its totals."""
    payload = request.get_json(silent=True) or {}
    try:
        cart = estimation_service.recall_estimation(estimation_id, cashier=payload.get("cashier"))
    except EstimationError as e:
        db.session.rollback()
        return _error(e)
    body = cart.to_dict()
    body["totals"] = cart_service.cart_totals(cart.id).to_dict()
    return body, 201


@estimations_bp.delete("/<int:estimation_id>")
def delete_estimation(estimation_id: int):
    try:
        deleted = estimation_service.delete_estimation(estimation_id)
    except EstimationError as e:
        return _error(e)
    if not deleted:
        return {"error": "Estimation not found"}, 404
    return {"ok": True}, 200


@estimations_bp.post("/expire")
def expire_estimations():
    return {"expired": estimation_service.expire_estimations()}
