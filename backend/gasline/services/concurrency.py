# Overview: Row locking and conflict retry for order and stock transactions.

from __future__ import annotations

import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InternalError
from ..extensions import db

T = TypeVar("T")

RETRYABLE = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE. A no-op on SQLite, honoured by PostgreSQL and MySQL."""
    return query.with_for_update()


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Run one unit of work that ends in a commit.

    func must be safe to call again from scratch: it re-reads everything it
    checks. Lock timeouts (OperationalError) and lost optimistic-version
    races (StaleDataError) roll back, sleep backoff_base * 2**n and retry;
    the last failure becomes InternalError. Any other exception rolls back
    and propagates as is.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.exception("Giving up after %d conflicting attempts", attempts)
                raise InternalError("Storage operation failed, please retry") from exc
            current_app.logger.warning("Write conflict (%s), retry %d/%d",
                                       type(exc).__name__, attempt, attempts - 1)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.session.rollback()
            raise
