# Overview: Tax groups and the tax-rate lookup injected into per-item inclusive pricing.

from __future__ import annotations

from ..extensions import db
from ..models import TaxGroup
from ..validation import ConflictError


class TaxError(Exception):
    """Raised for tax group management errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def tax_rate_lookup(country: str | None):
    """
    Build a `tax_rate_for(tax_group_id) -> bps | None` callable for pricing.

    With no country selected, or when the product's group belongs to the
    selected country, the product's own group applies. Otherwise the first
    active group of the selected country is used. No rate found means no tax.
    The groups are read once, when the lookup is built.
    """
    groups = {g.id: g for g in db.session.query(TaxGroup).filter_by(is_active=True).all()}
    country = (country or "").strip()

    fallback = None
    if country:
        in_country = sorted(
            (g for g in groups.values() if g.country == country),
            key=lambda g: g.id,
        )
        fallback = in_country[0].rate_bps if in_country else None

    def tax_rate_for(tax_group_id: int | None) -> int | None:
        group = groups.get(tax_group_id) if tax_group_id is not None else None
        if group is not None and (not country or group.country == country):
            return group.rate_bps
        return fallback

    return tax_rate_for


def create_tax_group(*, name: str, country: str, rate_bps: int, is_active: bool = True) -> TaxGroup:
    name = (name or "").strip()
    country = (country or "").strip()
    if not name or not country:
        raise TaxError("name and country are required")
    if rate_bps is None or rate_bps < 0 or rate_bps > 10000:
        raise TaxError("rate_bps must be between 0 and 10000")

    existing = db.session.query(TaxGroup).filter_by(country=country, name=name).first()
    if existing:
        raise ConflictError(f"Tax group {name} already exists for {country}")

    group = TaxGroup(name=name, country=country, rate_bps=rate_bps, is_active=is_active)
    db.session.add(group)
    db.session.commit()
    return group


def list_tax_groups(country: str | None = None) -> list[TaxGroup]:
    q = db.session.query(TaxGroup)
    if country:
        q = q.filter_by(country=country)
    return q.order_by(TaxGroup.country.asc(), TaxGroup.name.asc()).all()
