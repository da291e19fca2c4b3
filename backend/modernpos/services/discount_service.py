# Overview: Discount code validation, amount calculation, usage recording and management.

"""
Discount rules

Validation (validate_discount) rejects, each with its own code:
- not_found:            no discount for the code
- inactive:             is_active is False
- not_started/expired:  now outside [start_date, end_date]
- usage_limit_reached:  usage_limit set and usage_count >= usage_limit
- min_purchase_not_met: min_purchase_cents set and subtotal below it

Amounts (discount_amount_cents):
- percentage: subtotal * bps / 10000, capped at max_discount_cents when set
- fixed:      min(value, subtotal)
Never negative, never more than the subtotal.

Usage: record_usage() is called by checkout completion only. Applying a code
to a cart validates it but does not burn a use.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Discount
from ..models.discounts import DISCOUNT_PERCENTAGE, DISCOUNT_FIXED, DISCOUNT_TYPES
from ..validation import ConflictError
from .concurrency import get_for_update, run_with_retry
from .results import Outcome
from modernpos.time_utils import coerce_datetime, normalize_now


class DiscountError(Exception):
    """Raised for discount management errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


DISCOUNT_MUTABLE_FIELDS = {
    "name",
    "discount_type",
    "discount_value",
    "max_discount_cents",
    "min_purchase_cents",
    "start_date",
    "end_date",
    "usage_limit",
    "is_active",
}


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def get_discount_by_code(code: str | None) -> Discount | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.session.query(Discount).filter_by(code=normalized).first()


def get_discount(discount_id: int) -> Discount | None:
    return db.session.get(Discount, discount_id)


def list_discounts(active_only: bool = False) -> list[Discount]:
    q = db.session.query(Discount)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(Discount.created_at.desc(), Discount.id.desc()).all()


def validate_discount(discount: Discount | None, now: datetime | None, subtotal_cents: int) -> Outcome:
    """Check whether a discount may be applied to a cart with this subtotal right now."""
    now = normalize_now(now)

    if discount is None:
        return Outcome.failure("not_found", "Invalid or expired discount code")

    if not discount.is_active:
        return Outcome.failure("inactive", "Invalid or expired discount code", discount_code=discount.code)

    if discount.start_date and now < discount.start_date:
        return Outcome.failure("not_started", "Invalid or expired discount code", discount_code=discount.code)

    if discount.end_date and now > discount.end_date:
        return Outcome.failure("expired", "Invalid or expired discount code", discount_code=discount.code)

    if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
        return Outcome.failure(
            "usage_limit_reached",
            "Discount code usage limit reached",
            discount_code=discount.code,
            usage_limit=discount.usage_limit,
        )

    if discount.min_purchase_cents is not None and subtotal_cents < discount.min_purchase_cents:
        return Outcome.failure(
            "min_purchase_not_met",
            f"Minimum purchase of {discount.min_purchase_cents / 100:.2f} required",
            discount_code=discount.code,
            min_purchase_cents=discount.min_purchase_cents,
            subtotal_cents=subtotal_cents,
        )

    return Outcome.success(discount_code=discount.code)


def discount_amount_cents(discount, subtotal_cents: int) -> int:
    """Order-level discount for a subtotal; works on any object with Discount's fields."""
    if discount is None or subtotal_cents <= 0:
        return 0

    if discount.discount_type == DISCOUNT_PERCENTAGE:
        from .pricing_service import percent_of

        amount = percent_of(subtotal_cents, discount.discount_value or 0)
        if discount.max_discount_cents is not None:
            amount = min(amount, discount.max_discount_cents)
    elif discount.discount_type == DISCOUNT_FIXED:
        amount = min(discount.discount_value or 0, subtotal_cents)
    else:
        return 0

    return max(0, min(amount, subtotal_cents))


def record_usage(discount_id: int, *, commit: bool = True) -> Discount:
    """
    Count one redemption.

    Runs under the discount row lock and refuses to pass the usage limit, so
    two checkouts racing for the last use cannot both redeem it.
    """
    def _op():
        discount = get_for_update(Discount, discount_id)
        if discount is None:
            raise DiscountError("Discount not found")
        if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
            raise DiscountError(
                "Discount code usage limit reached",
                details={"code": discount.code, "usage_limit": discount.usage_limit},
            )
        discount.usage_count = (discount.usage_count or 0) + 1
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return discount

    if not commit:
        return _op()
    return run_with_retry(_op)


def _check_rules(values: dict) -> None:
    discount_type = values.get("discount_type")
    if discount_type not in DISCOUNT_TYPES:
        raise DiscountError(f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}")

    value = values.get("discount_value")
    if value is None or value < 0:
        raise DiscountError("discount_value must be >= 0")
    if discount_type == DISCOUNT_PERCENTAGE and value > 10000:
        raise DiscountError("percentage discount_value cannot exceed 10000 basis points")

    for key in ("max_discount_cents", "min_purchase_cents", "usage_limit"):
        if values.get(key) is not None and values[key] < 0:
            raise DiscountError(f"{key} must be >= 0")

    start, end = values.get("start_date"), values.get("end_date")
    if start is None or end is None:
        raise DiscountError("start_date and end_date are required")
    if end < start:
        raise DiscountError("end_date must not be before start_date")


def create_discount(data: dict) -> Discount:
    code = normalize_code(data.get("code"))
    if not code:
        raise DiscountError("code is required")
    if get_discount_by_code(code) is not None:
        raise ConflictError(f"Discount code {code} already exists")

    values = {k: data.get(k) for k in DISCOUNT_MUTABLE_FIELDS}
    values["start_date"] = coerce_datetime(values.get("start_date"))
    values["end_date"] = coerce_datetime(values.get("end_date"))
    if values.get("is_active") is None:
        values["is_active"] = True
    _check_rules(values)

    discount = Discount(code=code, usage_count=0, **values)
    db.session.add(discount)
    db.session.commit()
    return discount


def update_discount(discount_id: int, data: dict) -> Discount | None:
    def _op():
        discount = get_for_update(Discount, discount_id)
        if discount is None:
            return None
        values = {k: getattr(discount, k) for k in DISCOUNT_MUTABLE_FIELDS}
        for key in DISCOUNT_MUTABLE_FIELDS:
            if key in data:
                values[key] = data[key]
        values["start_date"] = coerce_datetime(values.get("start_date"))
        values["end_date"] = coerce_datetime(values.get("end_date"))
        _check_rules(values)
        for key, value in values.items():
            setattr(discount, key, value)
        db.session.commit()
        return discount

    return run_with_retry(_op)


def delete_discount(discount_id: int) -> bool:
    """
    Remove a discount code.

    Codes that were already redeemed are deactivated instead, so completed
    transactions keep a valid reference.
    """
    discount = db.session.get(Discount, discount_id)
    if discount is None:
        return False
    if discount.usage_count:
        discount.is_active = False
    else:
        db.session.delete(discount)
    db.session.commit()
    return True
