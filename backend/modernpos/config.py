# backend/modernpos/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///modernpos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tax policy: "flat8" (order-level flat rate) or "perItemInclusive"
    # (rate of each tax-inclusive product's tax group for TAX_COUNTRY)
    TAX_POLICY = os.environ.get("POS_TAX_POLICY", "flat8")
    FLAT_TAX_RATE_BPS = _int_env("POS_FLAT_TAX_RATE_BPS", 800)
    TAX_COUNTRY = os.environ.get("POS_TAX_COUNTRY", "")

    ESTIMATION_VALID_DAYS = _int_env("POS_ESTIMATION_VALID_DAYS", 7)

    # One loyalty point per whole currency unit spent
    LOYALTY_CENTS_PER_POINT = _int_env("POS_LOYALTY_CENTS_PER_POINT", 100)

    PAYMENT_TENDER_TYPES = ("cash", "card", "digital", "gift_card", "store_credit")
