from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


class ActivityEvent(db.Model):
    """
    Append-only activity history.

    Written in the same DB transaction as the domain change it describes.
    No updates, no deletes.
    """
    __tablename__ = "activity_events"
    __table_args__ = (
        db.Index("ix_activity_category_occurred", "category", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    category = db.Column(db.String(32), nullable=False, index=True)  # transaction, inventory, discount, customer, estimation, shift, expense
    action = db.Column(db.String(64), nullable=False)  # e.g. "Sale Completed", "PO Received"
    description = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="success")  # success, info, warning

    # What it refers to
    reference = db.Column(db.String(64), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=True)

    actor = db.Column(db.String(128), nullable=False, default="Unknown")
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    # Small JSON blob of extra detail
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "action": self.action,
            "description": self.description,
            "status": self.status,
            "reference": self.reference,
            "amount_cents": self.amount_cents,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "payload": self.payload,
        }


class DocumentSequence(db.Model):
    """
    Monotonic per-type document counters.

    WHY: numbers derived from row counts repeat once rows are deleted and
    collide under concurrent creation.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
        }
