# Overview: Flask API routes for the product catalog and tax groups; parses input and returns JSON responses.

# backend/modernpos/routes/products.py
"""
Catalog routes.

Stock is not writable here: a product's opening stock is posted to the
ledger on creation and later changes go through /api/inventory.
"""
from flask import Blueprint, request
from ..services import products_service
from ..services import tax_service
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    require_int,
    ValidationError,
    ConflictError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "category",
        "price_cents",
        "cost_price_cents",
        "min_stock",
        "tax_group_id",
        "tax_inclusive",
        "is_active",
    },
    required_on_create={"sku", "name", "price_cents"},
)

# Body keys handled by the route rather than mapped onto Product columns
PRODUCT_EXTRA_KEYS = ("opening_stock", "variants", "actor")

products_bp = Blueprint("products", __name__, url_prefix="/api")


@products_bp.get("/products")
def list_products():
    """
    List products with optional filters and pagination.

    Query params:
    - category: str (optional)
    - search: str (optional) - matches name or SKU
    - active: "1" to hide inactive products
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        category=request.args.get("category"),
        search=request.args.get("search"),
        active_only=request.args.get("active") == "1",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/products/categories")
def list_categories():
    return {"items": products_service.list_categories()}


@products_bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    product = products_service.get_product(product_id)
    if product is None:
        return {"error": "Product not found"}, 404
    return product.to_dict()


@products_bp.post("/products")
def create_product_route():
    """
    Create a new product.

    Request body: product columns, plus
    - opening_stock: int (optional, default 0)
    - variants: [{name, variant_type, value, price_modifier_cents, stock, is_default}] (optional)
    - actor: str (optional)
    """
    payload = request.get_json(silent=True) or {}
    extras = {k: payload.pop(k) for k in PRODUCT_EXTRA_KEYS if k in payload}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        opening_stock = require_int(extras, "opening_stock", default=0, minimum=0)
        variants = extras.get("variants") or []
        if not isinstance(variants, list):
            raise ValidationError("variants must be a list")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(
            patch=patch,
            opening_stock=opening_stock,
            variants=variants,
            actor=extras.get("actor"),
        )
    except ConflictError as e:
        return {"error": str(e)}, 409
    except products_service.ProductError as e:
        return {"error": str(e), "details": e.details}, 400

    return created, 201


@products_bp.put("/products/<int:product_id>")
@products_bp.patch("/products/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    if "stock" in payload:
        return {"error": "stock cannot be patched; post a stock adjustment instead"}, 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except products_service.ProductError as e:
        return {"error": str(e), "details": e.details}, 400

    if updated is None:
        return {"error": "Product not found"}, 404
    return updated


@products_bp.delete("/products/<int:product_id>")
def delete_product_route(product_id: int):
    """Deactivate a product; its history stays intact."""
    if not products_service.delete_product(product_id=product_id):
        return {"error": "Product not found"}, 404
    return {"ok": True}, 200


@products_bp.post("/products/<int:product_id>/variants")
def add_variant_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        variant = products_service.add_variant(product_id=product_id, data=payload)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except products_service.ProductError as e:
        status = 404 if str(e) == "Product not found" else 400
        return {"error": str(e), "details": e.details}, status
    return variant, 201


@products_bp.get("/tax-groups")
def list_tax_groups():
    groups = tax_service.list_tax_groups(country=request.args.get("country"))
    return {"items": [g.to_dict() for g in groups], "count": len(groups)}


@products_bp.post("/tax-groups")
def create_tax_group():
    payload = request.get_json(silent=True) or {}
    try:
        group = tax_service.create_tax_group(
            name=payload.get("name"),
            country=payload.get("country"),
            rate_bps=require_int(payload, "rate_bps", minimum=0),
            is_active=bool(payload.get("is_active", True)),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except tax_service.TaxError as e:
        return {"error": str(e)}, 400
    return group.to_dict(), 201
