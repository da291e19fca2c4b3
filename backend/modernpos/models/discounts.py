from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


class Discount(db.Model):
    """
    Order-level discount code.

    discount_value is basis points for PERCENTAGE and cents for FIXED.
    max_discount_cents caps PERCENTAGE discounts only.

    usage_count is incremented exactly once per completed checkout that used
    the code and never decremented.
    """
    __tablename__ = "discounts"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_discounts_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Stored upper-cased; lookups normalize the same way
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    max_discount_cents = db.Column(db.Integer, nullable=True)
    min_purchase_cents = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "max_discount_cents": self.max_discount_cents,
            "min_purchase_cents": self.min_purchase_cents,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
