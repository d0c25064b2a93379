# Overview: Transaction boundaries, row locking and retry for multi-step writes.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import PersistenceError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    Start the write transaction up front on SQLite.

    pysqlite defers BEGIN until the first DML statement; savepoints taken
    before that would run outside the transaction.
    """
    connection = db.session.connection()
    if connection.dialect.name != "sqlite":
        return
    if connection.connection.driver_connection.in_transaction:
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute one atomic DB operation, retrying on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError.
    Any other failure rolls the session back and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    attempts = max(1, attempts)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after lock contention (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


@contextmanager
def primary_write(description: str):
    """
    Wrap a write the operation cannot proceed without.

    Database failures roll back the whole transaction and surface as
    PersistenceError. Lock contention is left to run_with_retry.
    """
    try:
        yield
    except (OperationalError, StaleDataError):
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Primary write failed: %s", description)
        raise PersistenceError(f"Failed to {description}") from exc


class PeripheralWrite:
    """Outcome of a best_effort block."""

    def __init__(self, description: str):
        self.description = description
        self.ok = True


@contextmanager
def best_effort(description: str, **context):
    """
    Run a secondary write (stock movement, loyalty) inside a SAVEPOINT.

    On database failure only the savepoint is rolled back; the failure is
    logged and the enclosing transaction continues. Lock contention is
    raised so run_with_retry can replay the whole operation.
    """
    outcome = PeripheralWrite(description)
    try:
        with db.session.begin_nested():
            yield outcome
    except (OperationalError, StaleDataError):
        raise
    except SQLAlchemyError:
        outcome.ok = False
        logger.exception("Skipped %s %s", description, context)
