# Overview: Cashier shifts and the running sales totals credited by checkout.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Shift
from ..models.shifts import SHIFT_STATUS_ACTIVE, SHIFT_STATUS_CLOSED
from .activity_service import append_activity
from .concurrency import get_for_update, run_with_retry
from modernpos.time_utils import normalize_now


class ShiftError(Exception):
    """Raised for shift operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def get_open_shift(user_name: str) -> Shift | None:
    return (
        db.session.query(Shift)
        .filter_by(user_name=user_name, status=SHIFT_STATUS_ACTIVE)
        .order_by(Shift.started_at.desc(), Shift.id.desc())
        .first()
    )


def start_shift(user_name: str, starting_cash_cents: int = 0, notes: str | None = None,
                now: datetime | None = None) -> Shift:
    user_name = (user_name or "").strip()
    if not user_name:
        raise ShiftError("user_name is required")
    if starting_cash_cents is None or starting_cash_cents < 0:
        raise ShiftError("starting_cash_cents must be >= 0")
    if get_open_shift(user_name) is not None:
        raise ShiftError(f"{user_name} already has an active shift")

    ts = normalize_now(now)
    shift = Shift(
        user_name=user_name,
        status=SHIFT_STATUS_ACTIVE,
        started_at=ts,
        starting_cash_cents=starting_cash_cents,
        total_sales_cents=0,
        total_transactions=0,
        notes=notes,
    )
    db.session.add(shift)
    db.session.flush()
    append_activity(
        category="shift",
        action="Shift Started",
        description=f"{user_name} started a shift",
        actor=user_name,
        amount_cents=starting_cash_cents,
        occurred_at=ts,
    )
    db.session.commit()
    return shift


def end_shift(shift_id: int, ending_cash_cents: int, notes: str | None = None,
              now: datetime | None = None) -> Shift:
    def _op():
        ts = normalize_now(now)
        shift = get_for_update(Shift, shift_id)
        if shift is None:
            raise ShiftError("Shift not found", details={"shift_id": shift_id})
        if shift.status != SHIFT_STATUS_ACTIVE:
            raise ShiftError("Shift is already closed")
        if ending_cash_cents is None or ending_cash_cents < 0:
            raise ShiftError("ending_cash_cents must be >= 0")

        shift.status = SHIFT_STATUS_CLOSED
        shift.ended_at = ts
        shift.ending_cash_cents = ending_cash_cents
        if notes:
            shift.notes = notes
        append_activity(
            category="shift",
            action="Shift Ended",
            description=f"{shift.user_name} ended a shift with {shift.total_transactions} sale(s)",
            actor=shift.user_name,
            amount_cents=shift.total_sales_cents,
            occurred_at=ts,
        )
        db.session.commit()
        return shift

    return run_with_retry(_op)


def record_sale(user_name: str, total_cents: int) -> Shift | None:
    """Add a completed sale to the cashier's active shift, if any; caller commits."""
    shift = get_open_shift(user_name)
    if shift is None:
        return None
    shift = get_for_update(Shift, shift.id)
    shift.total_sales_cents = (shift.total_sales_cents or 0) + total_cents
    shift.total_transactions = (shift.total_transactions or 0) + 1
    db.session.flush()
    return shift
