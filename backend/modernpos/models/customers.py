from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data for purchase tracking and loyalty.

    Denormalized aggregates (loyalty_points, total_spent_cents, last_visit_at)
    are updated by checkout when a sale for this customer completes.

    B2B fields are carried for invoicing but not computed against.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True, index=True)
    address = db.Column(db.String(255), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_visits = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_b2b = db.Column(db.Boolean, nullable=False, default=False)
    company_name = db.Column(db.String(255), nullable=True)
    gstin = db.Column(db.String(32), nullable=True)
    credit_limit_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "loyalty_points": self.loyalty_points,
            "total_spent_cents": self.total_spent_cents,
            "total_visits": self.total_visits,
            "last_visit_at": to_utc_z(self.last_visit_at) if self.last_visit_at else None,
            "is_b2b": self.is_b2b,
            "company_name": self.company_name,
            "gstin": self.gstin,
            "credit_limit_cents": self.credit_limit_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
