from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


PO_STATUS_DRAFT = "draft"
PO_STATUS_SENT = "sent"
PO_STATUS_PARTIAL = "partial"
PO_STATUS_RECEIVED = "received"
PO_STATUS_CANCELLED = "cancelled"

PO_KIND_STANDARD = "standard"
PO_KIND_REPLACEMENT = "replacement"


class PurchaseOrder(db.Model):
    """
    Supplier order tracked through (partial) receipt.

    LIFECYCLE: draft -> sent -> {partial, received} -> received.
    cancelled is terminal and reachable from any non-received state.

    REPLACEMENTS: damaged units found at receipt spawn a child order with
    kind="replacement" and parent_id pointing here.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_purchase_orders_docnum"),
        db.Index("ix_purchase_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    supplier_name = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PO_STATUS_SENT, index=True)
    kind = db.Column(db.String(16), nullable=False, default=PO_KIND_STANDARD)
    parent_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)

    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_mode = db.Column(db.String(16), nullable=False, default="credit")  # pay_now, credit

    created_by = db.Column(db.String(128), nullable=False, default="Unknown")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        lazy=True,
        order_by="PurchaseOrderItem.id",
        cascade="all, delete-orphan",
    )
    parent = db.relationship("PurchaseOrder", remote_side=[id], backref=db.backref("replacements", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def find_item(self, product_id: int) -> "PurchaseOrderItem | None":
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "status": self.status,
            "kind": self.kind,
            "parent_id": self.parent_id,
            "total_cost_cents": self.total_cost_cents,
            "payment_mode": self.payment_mode,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "notes": self.notes,
            "items": [i.to_dict() for i in self.items],
            "version_id": self.version_id,
        }


class PurchaseOrderItem(db.Model):
    """Ordered line with running receipt tallies."""
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "product_id", name="uq_po_items_order_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    received_qty = db.Column(db.Integer, nullable=False, default=0)
    damaged_qty = db.Column(db.Integer, nullable=False, default=0)
    replacement_pending_qty = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    purchase_order = db.relationship("PurchaseOrder", back_populates="items")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_qty(self) -> int:
        return max(0, self.quantity - self.received_qty)

    @property
    def line_cost_cents(self) -> int:
        return self.quantity * self.unit_cost_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "line_cost_cents": self.line_cost_cents,
            "received_qty": self.received_qty,
            "damaged_qty": self.damaged_qty,
            "replacement_pending_qty": self.replacement_pending_qty,
        }
