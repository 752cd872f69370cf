# Overview: Transaction, locking and retry helpers shared by the stock-moving services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class ConcurrencyConflictError(Exception):
    """Raised when a row kept changing underneath an operation after every retry."""
    def __init__(self, message: str = "Concurrent update conflict, please retry", details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns still catch lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work as one transaction, retrying on concurrency failures.

    Any exception rolls the session back, so a multi-step operation never
    leaves part of its writes behind. OperationalError (locks, deadlocks) and
    StaleDataError (optimistic locking) are retried with exponential backoff;
    a StaleDataError on the last attempt surfaces as ConcurrencyConflictError.
    """
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflictError(details={"attempts": attempts}) from exc
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
        except Exception:
            db.session.rollback()
            raise
        time.sleep(backoff_base * (2 ** attempt))
    raise ConcurrencyConflictError(details={"attempts": attempts})
