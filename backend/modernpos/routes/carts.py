# Overview: Flask API routes for the register: carts, checkout, transactions and shifts.

# backend/modernpos/routes/carts.py
"""
Register routes.

A cart is edited line by line and priced on every read; checkout freezes
it into a Transaction and posts the sale to the stock ledger in the same
database transaction.

Admission failures (not enough stock, rejected discount code) are ordinary
answers and come back as an Outcome body instead of an "error" string.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..services import cart_service, checkout_service, shift_service
from ..services.cart_service import CartError
from ..services.checkout_service import CheckoutError
from ..services.shift_service import ShiftError
from ..validation import ValidationError, optional_int, require_int
from modernpos.time_utils import parse_iso_datetime

carts_bp = Blueprint("carts", __name__, url_prefix="/api")


def _error(e):
    status = 404 if str(e).endswith("not found") else 400
    return {"error": str(e), "details": e.details}, status


def _cart_body(cart_id: int) -> dict:
    cart = cart_service.get_cart(cart_id)
    body = cart.to_dict()
    body["totals"] = cart_service.cart_totals(cart_id).to_dict()
    return body


# =============================================================================
# CARTS
# =============================================================================

@carts_bp.post("/carts")
def create_cart():
    payload = request.get_json(silent=True) or {}
    try:
        customer_id = optional_int(payload, "customer_id")
    except ValidationError as e:
        return {"error": str(e)}, 400
    try:
        cart = cart_service.create_cart(cashier=payload.get("cashier"), customer_id=customer_id)
    except CartError as e:
        return _error(e)
    return _cart_body(cart.id), 201


@carts_bp.get("/carts/held")
def list_held_carts():
    carts = cart_service.list_held_carts()
    return {"items": [c.to_dict() for c in carts], "count": len(carts)}


@carts_bp.post("/carts/held/<int:customer_id>/recall")
def recall_held_cart(customer_id: int):
    payload = request.get_json(silent=True) or {}
    cart = cart_service.recall_held_cart(customer_id, cashier=payload.get("cashier"))
    if cart is None:
        return {"error": "No held cart for this customer"}, 404
    return _cart_body(cart.id)


@carts_bp.get("/carts/<int:cart_id>")
def get_cart(cart_id: int):
    if cart_service.get_cart(cart_id) is None:
        return {"error": "Cart not found"}, 404
    return _cart_body(cart_id)


@carts_bp.get("/carts/<int:cart_id>/totals")
def get_totals(cart_id: int):
    try:
        totals = cart_service.cart_totals(cart_id)
    except CartError as e:
        return _error(e)
    return totals.to_dict()


@carts_bp.post("/carts/<int:cart_id>/lines")
def add_line(cart_id: int):
    """
    Add units to the cart.

    Request body:
    {
        "product_id": int,
        "variant_id": int (optional),
        "quantity": int (optional, default 1)
    }

    Returns 409 with the Outcome when stock does not cover the request.
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id")
        variant_id = optional_int(payload, "variant_id")
        quantity = require_int(payload, "quantity", default=1, minimum=1)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        outcome = cart_service.add_to_cart(cart_id, product_id, variant_id, quantity)
    except CartError as e:
        db.session.rollback()
        return _error(e)
    if not outcome:
        return outcome.to_dict(), 409
    return _cart_body(cart_id)


@carts_bp.put("/carts/<int:cart_id>/lines")
def update_line(cart_id: int):
    """Set a line's quantity: {"product_id", "variant_id", "quantity"}; quantity <= 0 removes it."""
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id")
        variant_id = optional_int(payload, "variant_id")
        quantity = require_int(payload, "quantity")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        outcome = cart_service.update_quantity(cart_id, product_id, variant_id, quantity)
    except CartError as e:
        db.session.rollback()
        return _error(e)
    if not outcome:
        return outcome.to_dict(), 409
    return _cart_body(cart_id)


@carts_bp.delete("/carts/<int:cart_id>/lines/<int:product_id>")
def remove_line(cart_id: int, product_id: int):
    variant_id = request.args.get("variant_id", type=int)
    try:
        removed = cart_service.remove_from_cart(cart_id, product_id, variant_id)
    except CartError as e:
        return _error(e)
    if not removed:
        return {"error": "Line not found"}, 404
    return _cart_body(cart_id)


@carts_bp.put("/carts/<int:cart_id>/lines/<int:product_id>/discount")
def set_item_discount(cart_id: int, product_id: int):
    """
    Request body:
    {
        "variant_id": int (optional),
        "type": "percentage" | "fixed",
        "value": int (basis points for percentage, cents for fixed)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        variant_id = optional_int(payload, "variant_id")
        value = require_int(payload, "value", minimum=0)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        line = cart_service.set_item_discount(cart_id, product_id, variant_id, payload.get("type"), value)
    except CartError as e:
        return _error(e)
    if line is None:
        return {"error": "Line not found"}, 404
    return _cart_body(cart_id)


@carts_bp.delete("/carts/<int:cart_id>/lines/<int:product_id>/discount")
def clear_item_discount(cart_id: int, product_id: int):
    variant_id = request.args.get("variant_id", type=int)
    try:
        line = cart_service.clear_item_discount(cart_id, product_id, variant_id)
    except CartError as e:
        return _error(e)
    if line is None:
        return {"error": "Line not found"}, 404
    return _cart_body(cart_id)


@carts_bp.put("/carts/<int:cart_id>/customer")
def set_customer(cart_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        customer_id = optional_int(payload, "customer_id")
    except ValidationError as e:
        return {"error": str(e)}, 400
    try:
        cart_service.set_customer(cart_id, customer_id)
    except CartError as e:
        return _error(e)
    return _cart_body(cart_id)


@carts_bp.post("/carts/<int:cart_id>/discount")
def apply_discount(cart_id: int):
    """Apply an order discount code: {"code": str, "actor": str (optional)}."""
    payload = request.get_json(silent=True) or {}
    try:
        outcome = cart_service.apply_discount_code(cart_id, payload.get("code"), actor=payload.get("actor"))
    except CartError as e:
        return _error(e)
    if not outcome:
        return outcome.to_dict(), 400
    return _cart_body(cart_id)


@carts_bp.delete("/carts/<int:cart_id>/discount")
def remove_discount(cart_id: int):
    try:
        cart_service.remove_discount(cart_id)
    except CartError as e:
        return _error(e)
    return _cart_body(cart_id)


@carts_bp.post("/carts/<int:cart_id>/clear")
def clear_cart(cart_id: int):
    try:
        cart_service.clear_cart(cart_id)
    except CartError as e:
        return _error(e)
    return _cart_body(cart_id)


@carts_bp.post("/carts/<int:cart_id>/hold")
def hold_cart(cart_id: int):
    try:
        cart = cart_service.hold_cart(cart_id)
    except CartError as e:
        db.session.rollback()
        return _error(e)
    return cart.to_dict()


# =============================================================================
# CHECKOUT / TRANSACTIONS
# =============================================================================

@carts_bp.post("/carts/<int:cart_id>/checkout")
def checkout(cart_id: int):
    """
    Complete the sale.

    Request body:
    {
        "payments": [{"tender_type": "cash" | "card" | ..., "amount_cents": int}],
        "cashier": str (optional)
    }

    Returns the Transaction. Stock, loyalty, discount usage, estimation
    conversion, shift totals and the activity log all commit together.
    """
    payload = request.get_json(silent=True) or {}
    payments = payload.get("payments")
    if not isinstance(payments, list) or not payments:
        return {"error": "payments must be a non-empty list"}, 400

    try:
        txn = checkout_service.complete_checkout(cart_id, payments, cashier=payload.get("cashier"))
    except CheckoutError as e:
        return _error(e)
    except CartError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to complete checkout")
        return {"error": "Internal server error"}, 500
    return txn.to_dict(), 201


@carts_bp.get("/transactions")
def list_transactions():
    """
    Query params:
    - customer_id: int (optional)
    - cashier: str (optional)
    - from / to: ISO-8601 datetimes (optional)
    - limit: int (optional)
    """
    try:
        start = parse_iso_datetime(request.args.get("from"))
        end = parse_iso_datetime(request.args.get("to"))
    except ValueError:
        return {"error": "from/to must be ISO-8601 datetimes"}, 400

    txns = checkout_service.list_transactions(
        customer_id=request.args.get("customer_id", type=int),
        cashier=request.args.get("cashier"),
        start=start,
        end=end,
        limit=request.args.get("limit", type=int),
    )
    return {"items": [t.to_dict() for t in txns], "count": len(txns)}


@carts_bp.get("/transactions/<int:transaction_id>")
def get_transaction(transaction_id: int):
    txn = checkout_service.get_transaction(transaction_id)
    if txn is None:
        return {"error": "Transaction not found"}, 404
    return txn.to_dict()


# =============================================================================
# SHIFTS
# =============================================================================

@carts_bp.post("/shifts")
def start_shift():
    payload = request.get_json(silent=True) or {}
    try:
        starting_cash = require_int(payload, "starting_cash_cents", default=0, minimum=0)
    except ValidationError as e:
        return {"error": str(e)}, 400
    try:
        shift = shift_service.start_shift(
            payload.get("user_name") or "",
            starting_cash_cents=starting_cash,
            notes=payload.get("notes"),
        )
    except ShiftError as e:
        db.session.rollback()
        return _error(e)
    return shift.to_dict(), 201


@carts_bp.get("/shifts/current")
def current_shift():
    user_name = request.args.get("user_name")
    if not user_name:
        return {"error": "user_name is required"}, 400
    shift = shift_service.get_open_shift(user_name)
    if shift is None:
        return {"error": "No open shift"}, 404
    return shift.to_dict()


@carts_bp.post("/shifts/<int:shift_id>/end")
def end_shift(shift_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        ending_cash = require_int(payload, "ending_cash_cents", minimum=0)
    except ValidationError as e:
        return {"error": str(e)}, 400
    try:
        shift = shift_service.end_shift(shift_id, ending_cash, notes=payload.get("notes"))
    except ShiftError as e:
        db.session.rollback()
        return _error(e)
    return shift.to_dict()
