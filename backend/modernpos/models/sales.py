from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


CART_STATUS_OPEN = "open"
CART_STATUS_HELD = "held"
CART_STATUS_CHECKED_OUT = "checked_out"
CART_STATUS_ESTIMATED = "estimated"

ITEM_DISCOUNT_PERCENTAGE = "percentage"
ITEM_DISCOUNT_FIXED = "fixed"


class Cart(db.Model):
    """
    In-progress sale document.

    WHY: the cart is edited line by line at the register, can be held for a
    customer and recalled later, and is frozen into a Transaction (or an
    Estimation) when the cashier is done with it.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index("ix_carts_status_customer", "status", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=CART_STATUS_OPEN, index=True)
    cashier = db.Column(db.String(128), nullable=False, default="Unknown")

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True)
    recalled_estimation_id = db.Column(
        db.Integer,
        db.ForeignKey("estimations.id", use_alter=True, name="fk_carts_recalled_estimation_id"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    held_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "CartLine",
        back_populates="cart",
        lazy=True,
        order_by="CartLine.id",
        cascade="all, delete-orphan",
    )
    customer = db.relationship("Customer")
    discount = db.relationship("Discount")

    def find_line(self, product_id: int, variant_id: int | None = None) -> "CartLine | None":
        for line in self.lines:
            if line.product_id == product_id and line.variant_id == variant_id:
                return line
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "cashier": self.cashier,
            "customer_id": self.customer_id,
            "discount_id": self.discount_id,
            "discount_code": self.discount.code if self.discount else None,
            "recalled_estimation_id": self.recalled_estimation_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "held_at": to_utc_z(self.held_at) if self.held_at else None,
            "lines": [line.to_dict() for line in self.lines],
        }


class CartLine(db.Model):
    """One product (+ optional variant) on a cart, with an optional per-item discount."""
    __tablename__ = "cart_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_cart_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)

    # percentage (basis points) or fixed (cents)
    item_discount_type = db.Column(db.String(16), nullable=True)
    item_discount_value = db.Column(db.Integer, nullable=True)

    cart = db.relationship("Cart", back_populates="lines")
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "item_discount_type": self.item_discount_type,
            "item_discount_value": self.item_discount_value,
        }


class Transaction(db.Model):
    """
    Completed sale.

    IMMUTABLE: lines are copied out of the cart at checkout; nothing on this
    row references the live cart, so clearing or reusing the cart does not
    alter the receipt.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_transactions_docnum"),
        db.Index("ix_transactions_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)

    type = db.Column(db.String(16), nullable=False, default="sale")
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    tax_policy = db.Column(db.String(32), nullable=False)

    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True)
    discount_code = db.Column(db.String(64), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier = db.Column(db.String(128), nullable=False, default="Unknown")
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    lines = db.relationship(
        "TransactionLine",
        back_populates="transaction",
        lazy=True,
        order_by="TransactionLine.id",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "TransactionPayment",
        back_populates="transaction",
        lazy=True,
        order_by="TransactionPayment.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "type": self.type,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_policy": self.tax_policy,
            "total_paid_cents": self.total_paid_cents,
            "change_due_cents": self.change_due_cents,
            "discount_id": self.discount_id,
            "discount_code": self.discount_code,
            "customer_id": self.customer_id,
            "cashier": self.cashier,
            "shift_id": self.shift_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "lines": [line.to_dict() for line in self.lines],
            "payments": [p.to_dict() for p in self.payments],
        }


class TransactionLine(db.Model):
    """Snapshot of a cart line at checkout time."""
    __tablename__ = "transaction_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    variant_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)  # product price + variant modifier
    item_discount_type = db.Column(db.String(16), nullable=True)
    item_discount_value = db.Column(db.Integer, nullable=True)
    effective_unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    transaction = db.relationship("Transaction", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
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
            "tax_cents": self.tax_cents,
        }


class TransactionPayment(db.Model):
    """
    One tender of a (possibly split) payment.

    TENDER TYPES: cash, card, digital, gift_card, store_credit
    """
    __tablename__ = "transaction_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_txn_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    tender_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    transaction = db.relationship("Transaction", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "tender_type": self.tender_type,
            "amount_cents": self.amount_cents,
        }
