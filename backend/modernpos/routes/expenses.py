# Overview: Flask API routes for store expenses; parses input and returns JSON responses.

from flask import Blueprint, request

from ..extensions import db
from ..models import Expense
from ..services import expense_service
from ..services.expense_service import ExpenseError
from ..validation import ModelValidationPolicy, ValidationError, validate_payload
from modernpos.time_utils import parse_iso_datetime

EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields={
        "description",
        "amount_cents",
        "category",
        "expense_date",
        "approved_by",
        "notes",
    },
    required_on_create={"description", "amount_cents", "category", "expense_date"},
)

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


def _date_range():
    start = parse_iso_datetime(request.args.get("from"))
    end = parse_iso_datetime(request.args.get("to"))
    return start, end


@expenses_bp.get("")
def list_expenses():
    """
    Query params:
    - from / to: ISO-8601 dates, half-open range on expense_date (optional)
    - category: str (optional)
    """
    try:
        start, end = _date_range()
    except ValueError:
        return {"error": "from/to must be ISO-8601 datetimes"}, 400

    expenses = expense_service.list_expenses(start=start, end=end, category=request.args.get("category"))
    return {
        "items": [e.to_dict() for e in expenses],
        "count": len(expenses),
        "total_cents": sum(e.amount_cents for e in expenses),
    }


@expenses_bp.get("/summary")
def expense_summary():
    try:
        start, end = _date_range()
    except ValueError:
        return {"error": "from/to must be ISO-8601 datetimes"}, 400
    return expense_service.expense_totals(start=start, end=end)


@expenses_bp.get("/<int:expense_id>")
def get_expense(expense_id: int):
    expense = expense_service.get_expense(expense_id)
    if expense is None:
        return {"error": "Expense not found"}, 404
    return expense.to_dict()


@expenses_bp.post("")
def create_expense():
    """
    Request body:
    {
        "description": str,
        "amount_cents": int,
        "category": str,
        "expense_date": ISO-8601 date,
        "approved_by": str (optional),
        "notes": str (optional),
        "actor": str (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    actor = payload.pop("actor", None) if isinstance(payload, dict) else None
    try:
        patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=False)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        expense = expense_service.create_expense(patch, actor=actor)
    except ExpenseError as e:
        db.session.rollback()
        return {"error": str(e), "details": e.details}, 400
    return expense.to_dict(), 201
