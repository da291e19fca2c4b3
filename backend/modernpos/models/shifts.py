from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


SHIFT_STATUS_ACTIVE = "active"
SHIFT_STATUS_CLOSED = "closed"


class Shift(db.Model):
    """
    Cashier shift.

    total_sales_cents / total_transactions accumulate as checkouts complete
    while the shift is active. At most one active shift per cashier.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index("ix_shifts_user_status", "user_name", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_name = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_ACTIVE, index=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    starting_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    ending_cash_cents = db.Column(db.Integer, nullable=True)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_transactions = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_name": self.user_name,
            "status": self.status,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
            "starting_cash_cents": self.starting_cash_cents,
            "ending_cash_cents": self.ending_cash_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_transactions": self.total_transactions,
            "notes": self.notes,
        }
