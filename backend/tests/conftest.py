"""
Pytest fixtures for modernpos backend tests.

Provides an in-memory database, per-test table wipe, a test client and a
small catalog (products with and without variants, a supplier, a customer).
"""

from datetime import timedelta

import pytest

from modernpos import create_app
from modernpos.extensions import db
from modernpos.models import Customer, Discount, Product, ProductVariant, Supplier, TaxGroup
from modernpos.services import products_service
from modernpos.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TAX_POLICY': 'flat8',
        'FLAT_TAX_RATE_BPS': 800,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.config.update({'TAX_POLICY': 'flat8', 'FLAT_TAX_RATE_BPS': 800, 'TAX_COUNTRY': ''})


def make_product(sku="SKU-1", name="Widget", price_cents=1000, opening_stock=10, variants=None, **extra):
    """Create a product through the service so its opening stock is on the ledger."""
    patch = {"sku": sku, "name": name, "price_cents": price_cents}
    patch.update(extra)
    created = products_service.create_product(
        patch=patch,
        opening_stock=opening_stock,
        variants=variants,
        actor="tester",
    )
    return db.session.get(Product, created["id"])


@pytest.fixture(scope='function')
def product(db_session):
    """$10.00 product with 10 units on hand."""
    return make_product()


@pytest.fixture(scope='function')
def second_product(db_session):
    return make_product(sku="SKU-2", name="Gadget", price_cents=500, opening_stock=20)


@pytest.fixture(scope='function')
def variant_product(db_session):
    """T-shirt with a single unit of Large left."""
    return make_product(
        sku="TEE-1",
        name="T-Shirt",
        price_cents=1500,
        opening_stock=5,
        variants=[
            {"name": "Medium", "variant_type": "size", "value": "M", "stock": 4},
            {"name": "Large", "variant_type": "size", "value": "L", "price_modifier_cents": 200, "stock": 1},
        ],
    )


@pytest.fixture(scope='function')
def large_variant(variant_product):
    return next(v for v in variant_product.variants if v.name == "Large")


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Northwind Traders", contact_person="Anne", email="orders@northwind.example")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Dana Buyer", email="dana@example.com", loyalty_points=0,
                        total_spent_cents=0, total_visits=0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def tax_groups(db_session):
    standard = TaxGroup(name="Standard", country="US", rate_bps=800)
    gst = TaxGroup(name="GST 18", country="IN", rate_bps=1800)
    db_session.add_all([standard, gst])
    db_session.commit()
    return {"US": standard, "IN": gst}


def make_discount(code="SAVE20", discount_type="percentage", discount_value=2000, **extra):
    now = utcnow()
    discount = Discount(
        code=code,
        discount_type=discount_type,
        discount_value=discount_value,
        start_date=extra.pop("start_date", now - timedelta(days=1)),
        end_date=extra.pop("end_date", now + timedelta(days=30)),
        usage_count=extra.pop("usage_count", 0),
        is_active=extra.pop("is_active", True),
        **extra,
    )
    db.session.add(discount)
    db.session.commit()
    return discount


def variant_stock(variant_id):
    return db.session.get(ProductVariant, variant_id).stock
