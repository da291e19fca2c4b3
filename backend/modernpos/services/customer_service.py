# Overview: Customer records and the loyalty/spend aggregates updated by completed sales.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Customer
from ..validation import ConflictError
from .concurrency import get_for_update, run_with_retry
from modernpos.time_utils import normalize_now


CUSTOMER_MUTABLE_FIELDS = {
    "name",
    "email",
    "phone",
    "address",
    "is_b2b",
    "company_name",
    "gstin",
    "credit_limit_cents",
}


class CustomerError(Exception):
    """Raised for customer operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _check_email(email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    q = db.session.query(Customer).filter(Customer.email == email)
    if exclude_id is not None:
        q = q.filter(Customer.id != exclude_id)
    if q.first():
        raise ConflictError("A customer with this email already exists.")


def create_customer(patch: dict) -> Customer:
    name = (patch.get("name") or "").strip()
    if not name:
        raise CustomerError("name is required")
    if patch.get("credit_limit_cents") is not None and patch["credit_limit_cents"] < 0:
        raise CustomerError("credit_limit_cents must be >= 0")
    _check_email(patch.get("email"))

    customer = Customer(loyalty_points=0, total_spent_cents=0, total_visits=0)
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    customer.name = name
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, patch: dict) -> Customer | None:
    """Update contact and B2B fields; loyalty and spend figures are not patchable."""
    def _op():
        customer = get_for_update(Customer, customer_id)
        if customer is None:
            return None
        if "name" in patch and not (patch["name"] or "").strip():
            raise CustomerError("name cannot be blank")
        if "email" in patch:
            _check_email(patch["email"], exclude_id=customer.id)
        for k, v in patch.items():
            if k in CUSTOMER_MUTABLE_FIELDS:
                setattr(customer, k, v)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def get_customer(customer_id: int) -> Customer | None:
    return db.session.get(Customer, customer_id)


def list_customers(search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(Customer.name.ilike(like) | Customer.email.ilike(like) | Customer.phone.ilike(like))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()


def loyalty_points_for(total_cents: int, cents_per_point: int = 100) -> int:
    """One point per whole currency unit: floor(total)."""
    if total_cents <= 0 or cents_per_point <= 0:
        return 0
    return total_cents // cents_per_point


def record_purchase(
    customer_id: int,
    total_cents: int,
    now: datetime | None = None,
    *,
    cents_per_point: int = 100,
) -> Customer:
    """
    Credit a completed sale to the customer.

    Runs inside the checkout transaction (flush only).
    """
    customer = get_for_update(Customer, customer_id)
    if customer is None:
        raise CustomerError("Customer not found", details={"customer_id": customer_id})

    customer.loyalty_points = (customer.loyalty_points or 0) + loyalty_points_for(total_cents, cents_per_point)
    customer.total_spent_cents = (customer.total_spent_cents or 0) + total_cents
    customer.total_visits = (customer.total_visits or 0) + 1
    customer.last_visit_at = normalize_now(now)
    db.session.flush()
    return customer
