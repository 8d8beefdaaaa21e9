# Overview: Row locking and retry helpers for read-modify-write steps.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import StorageUnavailable


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite serializes writers instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, dropped connections) and
    StaleDataError (optimistic locking conflicts). Once attempts are
    exhausted the failure surfaces as StorageUnavailable.
    """
    if attempts is None:
        attempts = current_app.config.get("STORAGE_RETRY_ATTEMPTS", 3)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.exception("Storage operation failed after %d attempts", attempts)
                raise StorageUnavailable(str(exc)) from exc
            time.sleep(backoff_base * (2 ** attempt))
