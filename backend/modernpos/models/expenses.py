from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


class Expense(db.Model):
    """
    Store expense (rent, supplies, utilities, ...).

    Kept apart from the stock ledger and the sales tables; an expense never
    touches stock or a shift's takings.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_category_date", "category", "expense_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    expense_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    approved_by = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(128), nullable=False, default="Unknown")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "expense_date": to_utc_z(self.expense_date),
            "approved_by": self.approved_by,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
