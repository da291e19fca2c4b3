# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/modernpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent) and seed demo data unless --no-seed.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed
#   Idempotent demo data: tax groups, suppliers, removal types, products, discount codes.
# - python -m flask catalog list [--category Beverages]
#   List products with price and stock.
#
# Inventory:
# - python -m flask inventory verify
#   Compare every product's stock with its movement ledger (exit code 1 on mismatch).
# - python -m flask inventory low-stock
#   List products at or below their minimum stock.
#
# Maintenance:
# - python -m flask estimations expire
#   Mark active estimations past their expiry as expired.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import Discount, Product, RemovalType, Supplier, TaxGroup
from .services import products_service
from .services.discount_service import create_discount
from .services.estimation_service import expire_estimations
from .services.inventory_service import create_removal_type, low_stock_products, verify_stock_projection
from .services.supplier_service import create_supplier
from .services.tax_service import create_tax_group
from .time_utils import utcnow


DEFAULT_TAX_GROUPS = [
    ("Standard", "US", 800),
    ("Reduced", "US", 500),
    ("GST 18", "IN", 1800),
    ("GST 5", "IN", 500),
]

DEFAULT_SUPPLIERS = [
    {"name": "Northwind Traders", "contact_person": "Anne Dodsworth", "email": "orders@northwind.example"},
    {"name": "Contoso Wholesale", "contact_person": "Pat Kim", "phone": "555-0100"},
]

DEFAULT_REMOVAL_TYPES = [
    ("Damaged", "Broken or unsellable units"),
    ("Expired", "Past the sell-by date"),
    ("Theft", "Units missing from the shelf"),
    ("Internal Use", "Used by staff"),
]

# (sku, name, category, price_cents, cost_price_cents, opening_stock, min_stock, tax group, variants)
DEFAULT_PRODUCTS = [
    ("BEV-COLA", "Cola 330ml", "Beverages", 150, 80, 120, 24, "Standard", []),
    ("BEV-WATER", "Still Water 500ml", "Beverages", 100, 40, 200, 48, "Reduced", []),
    ("SNK-CHIPS", "Salted Chips", "Snacks", 250, 120, 60, 12, "Standard", []),
    ("APP-TEE", "Cotton T-Shirt", "Apparel", 1500, 600, 30, 5, "Standard", [
        {"name": "Small", "variant_type": "size", "value": "S", "price_modifier_cents": 0, "stock": 10},
        {"name": "Medium", "variant_type": "size", "value": "M", "price_modifier_cents": 0, "stock": 10,
         "is_default": True},
        {"name": "Large", "variant_type": "size", "value": "L", "price_modifier_cents": 200, "stock": 10},
    ]),
    ("HOM-MUG", "Ceramic Mug", "Home", 899, 350, 18, 4, "Standard", []),
]


def _money(cents: int) -> str:
    return f"${cents / 100:,.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--no-seed', is_flag=True, help='Create tables only')
@with_appcontext
def init_system(no_seed):
    """
    Create the schema and (optionally) the demo catalog.

    Safe to run repeatedly: existing tables and rows are left alone.
    """
    click.echo("START Initializing modernpos...")
    db.create_all()
    click.echo("PASS Tables ready")

    if no_seed:
        return
    _seed_catalog()


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to seed.")


@click.group('catalog')
def catalog_group():
    """Catalog seeding and inspection."""


def _seed_catalog():
    # 1. Tax groups
    click.echo("\nLIST Tax groups...")
    groups = {}
    for name, country, rate_bps in DEFAULT_TAX_GROUPS:
        group = db.session.query(TaxGroup).filter_by(name=name, country=country).first()
        if group is None:
            group = create_tax_group(name=name, country=country, rate_bps=rate_bps)
            click.echo(f"PASS Created tax group {name} ({country}, {rate_bps} bps)")
        groups.setdefault(name, group)

    # 2. Suppliers
    click.echo("\nLIST Suppliers...")
    for data in DEFAULT_SUPPLIERS:
        if db.session.query(Supplier).filter_by(name=data["name"]).first() is None:
            create_supplier(dict(data))
            click.echo(f"PASS Created supplier {data['name']}")

    # 3. Removal types
    click.echo("\nLIST Removal types...")
    for name, description in DEFAULT_REMOVAL_TYPES:
        if db.session.query(RemovalType).filter_by(name=name).first() is None:
            create_removal_type(name=name, description=description)
            click.echo(f"PASS Created removal type {name}")

    # 4. Products (opening stock goes through the ledger)
    click.echo("\nLIST Products...")
    for sku, name, category, price, cost, opening, min_stock, group_name, variants in DEFAULT_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first() is not None:
            continue
        products_service.create_product(
            patch={
                "sku": sku,
                "name": name,
                "category": category,
                "price_cents": price,
                "cost_price_cents": cost,
                "min_stock": min_stock,
                "tax_group_id": groups[group_name].id,
            },
            opening_stock=opening,
            variants=[dict(v) for v in variants],
            actor="system",
        )
        click.echo(f"PASS Created product {sku} - {name} ({opening} on hand)")

    # 5. Discount codes
    click.echo("\nLIST Discount codes...")
    now = utcnow()
    seed_codes = [
        {"code": "WELCOME10", "name": "Welcome 10%", "discount_type": "percentage", "discount_value": 1000,
         "max_discount_cents": 2000},
        {"code": "SAVE5", "name": "$5 off $25", "discount_type": "fixed", "discount_value": 500,
         "min_purchase_cents": 2500, "usage_limit": 100},
    ]
    for data in seed_codes:
        if db.session.query(Discount).filter_by(code=data["code"]).first() is not None:
            continue
        create_discount({**data, "start_date": now, "end_date": now + timedelta(days=90)})
        click.echo(f"PASS Created discount {data['code']}")

    click.echo("\nPASS Seed complete")


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    """
    Seed demo catalog data. Idempotent.

    Example:
        flask catalog seed
    """
    _seed_catalog()


@catalog_group.command('list')
@click.option('--category', help='Filter by category')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive products too')
@with_appcontext
def list_products_cli(category, show_all):
    """
    List products.

    Example:
        flask catalog list
        flask catalog list --category Beverages
    """
    query = db.session.query(Product)
    if category:
        query = query.filter_by(category=category)
    if not show_all:
        query = query.filter_by(is_active=True)
    products = query.order_by(Product.sku).all()

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'SKU':<12} {'Name':<25} {'Category':<12} {'Price':>10} {'Stock':>7} {'Variants':>9}")
    click.echo("="*90)
    for p in products:
        click.echo(f"{p.id:<5} {p.sku:<12} {p.name[:25]:<25} {(p.category or '-')[:12]:<12} "
                   f"{_money(p.price_cents):>10} {p.stock:>7} {len(p.variants):>9}")
    click.echo("="*90 + "\n")


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection."""


@inventory_group.command('verify')
@with_appcontext
def verify_inventory_cli():
    """
    Check that every product's stock equals its ledger sum.

    Exits with status 1 when any product is out of step.
    """
    mismatches = verify_stock_projection()
    if not mismatches:
        click.echo("PASS Stock matches the movement ledger for every product")
        return

    click.echo(f"FAIL {len(mismatches)} product(s) out of step with the ledger:")
    for m in mismatches:
        click.echo(f"   #{m['product_id']} {m['sku']}: stock={m['stock']} ledger={m['ledger_quantity']}")
    raise SystemExit(1)


@inventory_group.command('low-stock')
@with_appcontext
def low_stock_cli():
    products = low_stock_products()
    if not products:
        click.echo("No products at or below minimum stock.")
        return
    for p in products:
        click.echo(f"WARN {p.sku:<12} {p.name:<25} stock={p.stock} min={p.min_stock}")


@click.group('estimations')
def estimations_group():
    """Estimation maintenance."""


@estimations_group.command('expire')
@with_appcontext
def expire_estimations_cli():
    """Mark active estimations past their expiry date as expired."""
    expired = expire_estimations()
    click.echo(f"Expired {expired} estimation(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(estimations_group)
