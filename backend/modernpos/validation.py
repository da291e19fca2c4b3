# Overview: Request-body checking for the JSON API; allowlisted fields coerced against the ORM columns.

"""
Routes validate a JSON body before any service runs:

    patch = validate_payload(model=Product, payload=body, policy=PRODUCT_POLICY, partial=False)

The policy names the fields a client may write. Everything else about a
field (type, nullability, String length) is read from the mapped column,
so the model stays the single description of the row. The result is a
patch dict of Python values the services can assign directly.

ValidationError maps to HTTP 400, ConflictError to 409.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text

from modernpos.time_utils import coerce_datetime

# $9,999,999.99
MAX_PRICE_CENTS = 999_999_999

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


class ValidationError(ValueError):
    """Malformed or disallowed input (400)."""


class ConflictError(ValueError):
    """Input is well formed but collides with stored data, e.g. a duplicate SKU (409)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str):
        text = value.strip()
        # int() alone would accept "1_000"; only plain signed digits pass
        digits = text[1:] if text[:1] in "+-" else text
        if not (digits.isascii() and digits.isdigit()):
            raise ValidationError(f"{key} must be a plain integer")
        return int(text)
    raise ValidationError(f"{key} must be an integer")


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValidationError(f"{key} must be true or false")


def _as_datetime(key: str, value: Any) -> datetime:
    if not isinstance(value, (str, date)):
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    try:
        parsed = coerce_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _as_text(col, value: Any) -> str:
    text = str(value).strip()
    if text == "" and not col.nullable:
        raise ValidationError(f"{col.key} cannot be blank")
    length = getattr(col.type, "length", None)
    if length and len(text) > length:
        raise ValidationError(f"{col.key} exceeds max length {length}")
    return text


def _coerce(col, value: Any) -> Any:
    coltype = col.type
    if isinstance(coltype, Boolean):
        return _as_bool(col.key, value)
    if isinstance(coltype, Integer):
        return _as_int(col.key, value)
    if isinstance(coltype, DateTime):
        return _as_datetime(col.key, value)
    if isinstance(coltype, (String, Text)):
        return _as_text(col, value)
    return value


def validate_payload(*, model, payload: dict, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Check a JSON body against the policy and the model's columns.

    partial=False is create: every required_on_create field must be present.
    partial=True is patch: only the keys sent are checked.
    A null is accepted only for a nullable column.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = columns.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _coerce(col, raw)
    return patch


def _check_money(patch: dict, key: str) -> None:
    value = patch.get(key)
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_product(patch: dict) -> None:
    _check_money(patch, "price_cents")
    _check_money(patch, "cost_price_cents")
    if (patch.get("min_stock") or 0) < 0:
        raise ValidationError("min_stock must be >= 0")


def enforce_rules_customer(patch: dict) -> None:
    _check_money(patch, "credit_limit_cents")
    email = patch.get("email")
    if email and "@" not in email:
        raise ValidationError("email must be a valid address")


def require_int(payload: dict, key: str, *, default: int | None = None, minimum: int | None = None) -> int:
    """Integer field of a JSON body; missing or null falls back to default, or is an error without one."""
    value = optional_int(payload, key)
    if value is None:
        if default is None:
            raise ValidationError(f"Missing required field: {key}")
        return default
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    return value
