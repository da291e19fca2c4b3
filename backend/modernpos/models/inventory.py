from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_RETURN = "return"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_RETURN)


class InventoryMovement(db.Model):
    """
    Append-only stock ledger entry.

    quantity is always a positive magnitude; direction comes from `type`.
    Product.stock must equal SUM(in) - SUM(out) + SUM(return) per product.

    IMMUTABLE: rows are never updated or deleted.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_invmov_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_invmov_type_occurred", "type", "occurred_at"),
        db.CheckConstraint("quantity > 0", name="ck_invmov_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    # Denormalized snapshot: survives later renames
    product_name = db.Column(db.String(255), nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    # Removal type, "Sale", "Return: <reason>", "Stock Receiving", ...
    reason = db.Column(db.String(255), nullable=False)
    # Transaction number, PO number, receipt number
    reference = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    user = db.Column(db.String(128), nullable=False, default="Unknown")
    notes = db.Column(db.Text, nullable=True)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    def signed_quantity(self) -> int:
        if self.type == MOVEMENT_OUT:
            return -self.quantity
        return self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "reference": self.reference,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "user": self.user,
            "notes": self.notes,
            "unit_cost_cents": self.unit_cost_cents,
        }


class RemovalType(db.Model):
    """Named reason for taking stock out manually (Damaged, Expired, Theft, ...)."""
    __tablename__ = "removal_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
        }
