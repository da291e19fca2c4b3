# backend/modernpos/services/products_service.py
"""
Products Service

STOCK: product stock is never written from here after creation. A new
product's initial stock is posted as an "Opening Stock" movement so the
ledger explains every unit; later changes go through inventory_service.

Variants carry their own stock counter, set here on creation.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product, ProductVariant, TaxGroup
from ..validation import ConflictError, MAX_PRICE_CENTS
from .activity_service import append_activity
from .concurrency import get_for_update, run_with_retry
from .inventory_service import post_opening_stock

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "name",
    "category",
    "price_cents",
    "cost_price_cents",
    "min_stock",
    "tax_group_id",
    "tax_inclusive",
    "is_active",
}

VARIANT_FIELDS = {"name", "variant_type", "value", "price_modifier_cents", "stock", "is_default"}


class ProductError(Exception):
    """Raised for product catalog errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _check_product_rules(patch: dict) -> None:
    for key in ("price_cents", "cost_price_cents"):
        if key in patch and patch[key] is not None:
            if patch[key] < 0:
                raise ProductError(f"{key} must be >= 0")
            if patch[key] > MAX_PRICE_CENTS:
                raise ProductError(f"{key} cannot exceed {MAX_PRICE_CENTS}")
    if patch.get("min_stock") is not None and patch["min_stock"] < 0:
        raise ProductError("min_stock must be >= 0")
    if patch.get("tax_group_id") is not None:
        if db.session.get(TaxGroup, patch["tax_group_id"]) is None:
            raise ProductError("Tax group not found", details={"tax_group_id": patch["tax_group_id"]})


def _build_variant(data: dict) -> ProductVariant:
    unknown = set(data) - VARIANT_FIELDS
    if unknown:
        raise ProductError(f"Unknown variant fields: {', '.join(sorted(unknown))}")
    name = (data.get("name") or "").strip()
    if not name:
        raise ProductError("Variant name is required")
    stock = data.get("stock") or 0
    if stock < 0:
        raise ProductError("Variant stock must be >= 0")
    return ProductVariant(
        name=name,
        variant_type=data.get("variant_type"),
        value=data.get("value"),
        price_modifier_cents=data.get("price_modifier_cents") or 0,
        stock=stock,
        is_default=bool(data.get("is_default", False)),
    )


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def list_products(
    *,
    category: str | None = None,
    search: str | None = None,
    active_only: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional filters and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if category:
        base_query = base_query.filter(Product.category == category)
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(Product.name.ilike(like) | Product.sku.ilike(like))
    if active_only:
        base_query = base_query.filter(Product.is_active.is_(True))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def create_product(
    *,
    patch: dict,
    opening_stock: int = 0,
    variants: list[dict] | None = None,
    actor: str | None = None,
) -> dict:
    """
    Create a product using a validated patch dict.

    Args:
        patch: Product data (sku, name, price_cents, ...)
        opening_stock: Units on hand at creation, posted as an "in" movement
        variants: Optional variant dicts (name, variant_type, value,
            price_modifier_cents, stock, is_default)

    Raises:
        ConflictError: If the SKU already exists
        ProductError: On invalid prices, variants or stock
    """
    sku = (patch.get("sku") or "").strip()
    if not sku:
        raise ProductError("sku is required")
    if not (patch.get("name") or "").strip():
        raise ProductError("name is required")
    if opening_stock is None or opening_stock < 0:
        raise ProductError("Opening stock must be >= 0")

    existing = db.session.query(Product).filter(Product.sku == sku).first()
    if existing:
        raise ConflictError("SKU already exists.")

    _check_product_rules(patch)

    p = Product()
    apply_product_patch(p, patch)
    p.sku = sku
    for data in variants or []:
        p.variants.append(_build_variant(data))

    names = [v.name for v in p.variants]
    if len(names) != len(set(names)):
        raise ProductError("Variant names must be unique per product")

    db.session.add(p)
    db.session.flush()  # ensure p.id exists before the opening movement

    post_opening_stock(p, opening_stock, actor=actor)
    append_activity(
        category="inventory",
        action="Product Created",
        description=f"Created product {p.sku} {p.name}",
        actor=actor,
        reference=p.sku,
    )

    db.session.commit()
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict | None:
    """
    Update catalog fields of a product.

    Stock is not a patchable field; counted stock goes through
    inventory_service.apply_stock_adjustment.
    """
    if "stock" in patch:
        raise ProductError("stock cannot be patched; post a stock adjustment instead")

    def _op():
        p = get_for_update(Product, product_id)
        if not p:
            return None

        if "sku" in patch and patch["sku"] != p.sku:
            existing = (
                db.session.query(Product)
                .filter(Product.sku == patch["sku"], Product.id != p.id)
                .first()
            )
            if existing:
                raise ConflictError("SKU already exists.")

        _check_product_rules(patch)
        apply_product_patch(p, patch)
        db.session.commit()
        return p.to_dict()

    return run_with_retry(_op)


def delete_product(*, product_id: int) -> bool:
    """Soft-delete: movements and transactions keep referring to the row."""
    p = db.session.get(Product, product_id)
    if not p:
        return False
    p.is_active = False
    db.session.commit()
    return True


def add_variant(*, product_id: int, data: dict) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductError("Product not found", details={"product_id": product_id})

    variant = _build_variant(data)
    if any(v.name == variant.name for v in product.variants):
        raise ConflictError(f"Variant {variant.name} already exists for this product.")

    product.variants.append(variant)
    db.session.commit()
    return variant.to_dict()


def list_categories() -> list[str]:
    rows = (
        db.session.query(Product.category)
        .filter(Product.category.isnot(None))
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [r[0] for r in rows]
