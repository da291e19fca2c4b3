from datetime import datetime

import pytest

from modernpos.models import Expense, Product
from modernpos.validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    require_int,
    validate_payload,
)

EXPENSE = ModelValidationPolicy(
    writable_fields={"description", "amount_cents", "category", "expense_date", "notes"},
    required_on_create={"description", "amount_cents"},
)
PRODUCT = ModelValidationPolicy(writable_fields={"name", "price_cents", "is_active", "tax_inclusive"})


def test_payload_is_coerced_by_column_type(app):
    patch = validate_payload(
        model=Expense,
        payload={"description": "  Paper  ", "amount_cents": "1200", "expense_date": "2026-03-01T10:00:00Z", "notes": None},
        policy=EXPENSE,
        partial=False,
    )

    assert patch == {
        "description": "Paper",
        "amount_cents": 1200,
        "expense_date": datetime(2026, 3, 1, 10, 0),
        "notes": None,
    }


@pytest.mark.parametrize("payload", [
    {"amount_cents": 100},
    {"description": "Paper", "amount_cents": 12.5},
    {"description": "Paper", "amount_cents": "1e3"},
    {"description": "Paper", "amount_cents": True},
    {"description": "", "amount_cents": 100},
    {"description": None, "amount_cents": 100},
    {"description": "x" * 256, "amount_cents": 100},
    {"description": "Paper", "amount_cents": 100, "expense_date": "next tuesday"},
    {"description": "Paper", "amount_cents": 100, "created_by": "someone"},
])
def test_bad_payloads_are_rejected(app, payload):
    with pytest.raises(ValidationError):
        validate_payload(model=Expense, payload=payload, policy=EXPENSE, partial=False)


def test_partial_payload_skips_required_fields(app):
    assert validate_payload(model=Expense, payload={"notes": "late"}, policy=EXPENSE, partial=True) == {"notes": "late"}


@pytest.mark.parametrize("raw, expected", [(True, True), ("false", False), ("1", True), (0, False)])
def test_booleans_accept_only_boolean_spellings(app, raw, expected):
    patch = validate_payload(model=Product, payload={"is_active": raw}, policy=PRODUCT, partial=True)
    assert patch["is_active"] is expected


def test_unrecognised_boolean_is_rejected(app):
    with pytest.raises(ValidationError):
        validate_payload(model=Product, payload={"tax_inclusive": "sometimes"}, policy=PRODUCT, partial=True)


def test_product_money_rules():
    enforce_rules_product({"price_cents": 0, "cost_price_cents": None})
    with pytest.raises(ValidationError):
        enforce_rules_product({"price_cents": -1})
    with pytest.raises(ValidationError):
        enforce_rules_product({"cost_price_cents": 1_000_000_000})


def test_require_int():
    assert require_int({}, "quantity", default=1) == 1
    assert require_int({"quantity": 3}, "quantity", minimum=1) == 3
    with pytest.raises(ValidationError):
        require_int({}, "quantity")
    with pytest.raises(ValidationError):
        require_int({"quantity": "3"}, "quantity")
    with pytest.raises(ValidationError):
        require_int({"quantity": 0}, "quantity", minimum=1)
