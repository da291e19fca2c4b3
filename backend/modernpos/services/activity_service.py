# Overview: Append-only activity history written alongside domain changes.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import ActivityEvent
from modernpos.time_utils import normalize_now

"""
Activity history invariants

- Append-only; no updates or deletes.
- Events are added to the caller's DB transaction and never commit on their own.
- No domain logic lives here.
"""


def append_activity(
    *,
    category: str,
    action: str,
    description: str,
    actor: str | None = None,
    reference: str | None = None,
    amount_cents: int | None = None,
    status: str = "success",
    occurred_at: Optional[datetime] = None,
    payload: dict | None = None,
) -> ActivityEvent:
    event = ActivityEvent(
        category=category,
        action=action,
        description=description,
        status=status,
        reference=reference,
        amount_cents=amount_cents,
        actor=actor or "Unknown",
        occurred_at=normalize_now(occurred_at),
        payload=payload,
    )
    db.session.add(event)
    db.session.flush()
    return event


def list_activity(category: str | None = None, limit: int = 200) -> list[ActivityEvent]:
    q = db.session.query(ActivityEvent)
    if category:
        q = q.filter_by(category=category)
    return q.order_by(ActivityEvent.occurred_at.desc(), ActivityEvent.id.desc()).limit(limit).all()
