from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time in UTC, naive (the canonical internal form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_now(now: Optional[datetime] = None) -> datetime:
    """A caller-supplied clock reading as UTC-naive; the current time when None."""
    if now is None:
        return utcnow()
    return to_naive_utc(now)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    - None / "" -> None
    - a bare date ("2026-01-31") is midnight UTC
    - naive values are taken as UTC; "Z" and offsets are converted
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    return to_naive_utc(dt)


def coerce_datetime(value, *, default: Optional[datetime] = None) -> Optional[datetime]:
    """Accept a datetime, a date, an ISO string or None and return UTC-naive."""
    if value is None:
        return default
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        parsed = parse_iso_datetime(value)
        if parsed is None:
            return default
        return parsed
    raise ValueError(f"invalid datetime: {value!r}")


def days_after(start: datetime, days: int) -> datetime:
    return start + timedelta(days=days)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize as ISO-8601 with a trailing 'Z'; naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
