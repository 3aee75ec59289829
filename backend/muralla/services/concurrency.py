# Overview: Row locking and conflict retry helpers shared by the services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking before a check-then-write sequence.

    populate_existing() makes already-loaded objects pick up the locked row's
    current values instead of whatever the session saw earlier.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (it serialises writers instead),
    but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (OperationalError, StaleDataError),
):
    """
    Execute a whole unit of work, re-running it on conflict errors.

    `func` must be self-contained: it opens its own UnitOfWork so a failed
    attempt leaves nothing behind before the next one starts.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
