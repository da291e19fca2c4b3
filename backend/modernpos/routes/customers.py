# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, request

from ..extensions import db
from ..models import Customer
from ..services import customer_service
from ..services.customer_service import CustomerError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_customer,
    validate_payload,
)

# Loyalty and spend figures are maintained by checkout only
CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "email",
        "phone",
        "address",
        "is_b2b",
        "company_name",
        "gstin",
        "credit_limit_cents",
    },
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers():
    customers = customer_service.list_customers(search=request.args.get("search"))
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.get("/<int:customer_id>")
def get_customer(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    if customer is None:
        return {"error": "Customer not found"}, 404
    return customer.to_dict()


@customers_bp.post("")
def create_customer():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        customer = customer_service.create_customer(patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except CustomerError as e:
        return {"error": str(e), "details": e.details}, 400
    return customer.to_dict(), 201


@customers_bp.patch("/<int:customer_id>")
def update_customer(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        customer = customer_service.update_customer(customer_id, patch)
    except ConflictError as e:
        db.session.rollback()
        return {"error": str(e)}, 409
    except CustomerError as e:
        db.session.rollback()
        return {"error": str(e), "details": e.details}, 400
    if customer is None:
        return {"error": "Customer not found"}, 404
    return customer.to_dict()
