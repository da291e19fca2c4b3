# Overview: Supplier master data used by purchase orders and stock receiving.

from __future__ import annotations

from ..extensions import db
from ..models import Supplier
from ..validation import ConflictError


SUPPLIER_MUTABLE_FIELDS = {"name", "contact_person", "email", "phone", "is_active"}


def create_supplier(patch: dict) -> Supplier:
    name = (patch.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    if db.session.query(Supplier).filter_by(name=name).first():
        raise ConflictError(f"Supplier {name} already exists")

    supplier = Supplier(name=name)
    for k, v in patch.items():
        if k in SUPPLIER_MUTABLE_FIELDS and k != "name":
            setattr(supplier, k, v)
    db.session.add(supplier)
    db.session.commit()
    return supplier


def get_supplier(supplier_id: int) -> Supplier | None:
    return db.session.get(Supplier, supplier_id)


def list_suppliers(active_only: bool = False) -> list[Supplier]:
    q = db.session.query(Supplier)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(Supplier.name.asc()).all()
