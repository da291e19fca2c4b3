from __future__ import annotations

from ..extensions import db
from modernpos.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    STOCK: `stock` is a cached projection of the inventory movement ledger
    (in - out + return). Only inventory_service writes it, always together
    with the InventoryMovement that explains the change.

    VARIANTS: each variant carries its own on-hand quantity, independent of
    the parent's `stock`. A cart line for a variant is governed by the
    variant's figure.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_category_name", "category", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True, index=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    tax_group_id = db.Column(db.Integer, db.ForeignKey("tax_groups.id"), nullable=True, index=True)
    tax_inclusive = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tax_group = db.relationship("TaxGroup")
    variants = db.relationship(
        "ProductVariant",
        back_populates="product",
        lazy=True,
        order_by="ProductVariant.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    def find_variant(self, variant_id: int | None) -> "ProductVariant | None":
        if variant_id is None:
            return None
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    def to_dict(self, include_variants: bool = True) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "tax_group_id": self.tax_group_id,
            "tax_inclusive": self.tax_inclusive,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class ProductVariant(db.Model):
    """A purchasable sub-option (size, colour, ...) with its own stock and price adjustment."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "name", name="uq_product_variants_product_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    variant_type = db.Column(db.String(64), nullable=True)  # size, color, weight, ...
    value = db.Column(db.String(128), nullable=True)

    # Added to the product price (may be negative)
    price_modifier_cents = db.Column(db.Integer, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", back_populates="variants")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "variant_type": self.variant_type,
            "value": self.value,
            "price_modifier_cents": self.price_modifier_cents,
            "stock": self.stock,
            "is_default": self.is_default,
            "version_id": self.version_id,
        }


class TaxGroup(db.Model):
    """
    Country-scoped tax rate.

    Read by the per-item inclusive tax policy through tax_service.tax_rate_lookup.
    """
    __tablename__ = "tax_groups"
    __table_args__ = (
        db.UniqueConstraint("country", "name", name="uq_tax_groups_country_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    country = db.Column(db.String(64), nullable=False, index=True)
    rate_bps = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "country": self.country,
            "rate_bps": self.rate_bps,
            "is_active": self.is_active,
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
