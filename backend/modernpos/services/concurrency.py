# Overview: Locking and retry helpers wrapped around every read-check-write-append sequence.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for stock, discount and purchase-order writes.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; version_id_col on the
    mapped rows still turns a lost update into a StaleDataError.
    """
    return query.with_for_update()


def get_for_update(model, row_id, *, refresh: bool = True):
    """Load one row under lock, re-reading it from the database."""
    if row_id is None:
        return None
    query = lock_for_update(db.session.query(model).filter_by(id=row_id))
    if refresh:
        query = query.populate_existing()
    return query.first()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a unit of work, retrying on concurrency failures.

    Retries on OperationalError (database locked) and StaleDataError
    (optimistic version conflict). `func` must re-read everything it
    decides on, because the session is rolled back between attempts.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Concurrent update detected, retrying (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
