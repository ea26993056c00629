# services/transaction.py
"""
Optimistic read-modify-write on top of the scoped session.

Rows that carry a ``version_id_col`` (ticket types, tickets) are written with
``UPDATE ... WHERE version = :seen``. A concurrent writer makes that match
zero rows and SQLAlchemy raises ``StaleDataError``; the whole body is then
rolled back and run again so it re-reads the committed state. Transient
driver failures (lock waits, deadlocks, read/write timeouts) are retried the
same way. Business denials (``ZestError``) are never retried.
"""
from __future__ import annotations

import time
from typing import Callable, Optional, TypeVar

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from db import db
from services.errors import TransactionFailedError, ZestError

T = TypeVar("T")

_RETRYABLE = (StaleDataError, OperationalError)


def run_in_transaction(fn: Callable[[], T], *, attempts: Optional[int] = None, tag: str = "tx") -> T:
    max_attempts = int(attempts or current_app.config.get("TX_MAX_ATTEMPTS", 5))
    backoff_ms = int(current_app.config.get("TX_RETRY_BACKOFF_MS", 0) or 0)

    for attempt in range(1, max_attempts + 1):
        try:
            result = fn()
            db.session.commit()
            return result
        except ZestError:
            db.session.rollback()
            raise
        except _RETRYABLE as e:
            db.session.rollback()
            current_app.logger.warning(
                "[tx:%s] attempt %d/%d conflicted (%s); retrying",
                tag, attempt, max_attempts, e.__class__.__name__,
            )
            if backoff_ms and attempt < max_attempts:
                time.sleep(backoff_ms * attempt / 1000.0)
        except Exception:
            db.session.rollback()
            raise

    current_app.logger.error("[tx:%s] gave up after %d attempts", tag, max_attempts)
    raise TransactionFailedError(
        "The operation could not be completed, please try again",
        attempts=max_attempts,
    )
