from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


ESTIMATION_STATUS_ACTIVE = "active"
ESTIMATION_STATUS_CONVERTED = "converted"
ESTIMATION_STATUS_EXPIRED = "expired"


class Estimation(db.Model):
    """
    Non-binding quote frozen from a cart.

    Same totals shape as Transaction. Flips to "converted" when a checkout for
    the same customer sells exactly the same (product, variant, quantity)
    multiset; flips to "expired" once expires_at has passed.
    """
    __tablename__ = "estimations"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_estimations_docnum"),
        db.Index("ix_estimations_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ESTIMATION_STATUS_ACTIVE, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    tax_policy = db.Column(db.String(32), nullable=False)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(128), nullable=False, default="Unknown")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    converted_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    lines = db.relationship(
        "EstimationLine",
        back_populates="estimation",
        lazy=True,
        order_by="EstimationLine.id",
        cascade="all, delete-orphan",
    )
    customer = db.relationship("Customer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "status": self.status,
            "customer_id": self.customer_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_policy": self.tax_policy,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "converted_transaction_id": self.converted_transaction_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class EstimationLine(db.Model):
    __tablename__ = "estimation_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    estimation_id = db.Column(db.Integer, db.ForeignKey("estimations.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    variant_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    item_discount_type = db.Column(db.String(16), nullable=True)
    item_discount_value = db.Column(db.Integer, nullable=True)
    effective_unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    estimation = db.relationship("Estimation", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "estimation_id": self.estimation_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "item_discount_type": self.item_discount_type,
            "item_discount_value": self.item_discount_value,
            "effective_unit_price_cents": self.effective_unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
