# Overview: Service-layer helpers for atomic ledger writes; locking, retry and serialized commits.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_serialized_write() -> None:
    """
    Take the database write lock up front on SQLite.

    pysqlite defers BEGIN until the first DML statement, so two writers could
    both read an item's stock before either writes. BEGIN IMMEDIATE closes
    that window. Other dialects rely on row locks from lock_for_update.
    """
    if db.engine.dialect.name != "sqlite":
        return
    if db.session.connection().connection.dbapi_connection.in_transaction:
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before every
    retry so a failed attempt leaves nothing behind.
    """
    if attempts is None:
        attempts = current_app.config.get("MUTATION_RETRY_ATTEMPTS", 3)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying ledger write after %s (attempt %d)", type(exc).__name__, attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
