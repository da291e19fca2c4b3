# Overview: Store expenses; recorded, listed by date and category, and summed per category.

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Expense
from ..validation import MAX_PRICE_CENTS
from .activity_service import append_activity
from modernpos.time_utils import coerce_datetime, normalize_now

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("description", "amount_cents", "category", "expense_date")


class ExpenseError(Exception):
    """Raised for expense operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def create_expense(patch: dict, actor: str | None = None, now: datetime | None = None) -> Expense:
    """
    Record one expense.

    patch carries description, amount_cents (> 0), category and expense_date
    (datetime, date or ISO string); approved_by and notes are optional.
    """
    missing = [f for f in REQUIRED_FIELDS if patch.get(f) in (None, "")]
    if missing:
        raise ExpenseError(f"Missing required fields: {', '.join(missing)}")

    amount = patch["amount_cents"]
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ExpenseError("amount_cents must be a positive integer", details={"amount_cents": amount})
    if amount > MAX_PRICE_CENTS:
        raise ExpenseError(f"amount_cents cannot exceed {MAX_PRICE_CENTS}")

    try:
        expense_date = coerce_datetime(patch["expense_date"])
    except ValueError:
        raise ExpenseError("expense_date must be an ISO-8601 date", details={"expense_date": patch["expense_date"]})
    if expense_date is None:
        raise ExpenseError("expense_date must be an ISO-8601 date")

    ts = normalize_now(now)
    expense = Expense(
        description=str(patch["description"]).strip(),
        amount_cents=amount,
        category=str(patch["category"]).strip(),
        expense_date=expense_date,
        approved_by=(patch.get("approved_by") or None),
        notes=patch.get("notes"),
        created_by=actor or "Unknown",
        created_at=ts,
    )
    db.session.add(expense)
    db.session.flush()
    append_activity(
        category="expense",
        action="Expense Recorded",
        description=f"{expense.category}: {expense.description}",
        actor=actor,
        amount_cents=amount,
        occurred_at=ts,
    )
    db.session.commit()
    logger.info("Expense %s recorded (%s, %d cents)", expense.id, expense.category, amount)
    return expense


def get_expense(expense_id: int) -> Expense | None:
    return db.session.get(Expense, expense_id)


def _filtered(q, start: datetime | None, end: datetime | None, category: str | None):
    if start is not None:
        q = q.filter(Expense.expense_date >= start)
    if end is not None:
        q = q.filter(Expense.expense_date < end)
    if category:
        q = q.filter(Expense.category == category)
    return q


def list_expenses(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    category: str | None = None,
) -> list[Expense]:
    """Expenses dated in [start, end), newest first."""
    q = _filtered(db.session.query(Expense), start, end, category)
    return q.order_by(Expense.expense_date.desc(), Expense.id.desc()).all()


def expense_totals(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Sum of expenses dated in [start, end): overall and per category."""
    q = _filtered(
        db.session.query(Expense.category, func.sum(Expense.amount_cents), func.count(Expense.id)),
        start,
        end,
        None,
    )
    rows = q.group_by(Expense.category).order_by(Expense.category.asc()).all()
    by_category = [
        {"category": category, "total_cents": int(total or 0), "count": count}
        for category, total, count in rows
    ]
    return {
        "total_cents": sum(row["total_cents"] for row in by_category),
        "count": sum(row["count"] for row in by_category),
        "by_category": by_category,
    }
