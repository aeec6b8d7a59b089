# Overview: Transaction helpers shared by the order engine services (atomic scope, row locks, retry).

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the writer lock taken by begin_immediate() serializes instead.
    """
    return query.with_for_update()


def begin_immediate(session) -> None:
    """
    Take the SQLite write lock up front so two writers never interleave
    their read-check-write sequences. No-op on other dialects.
    """
    if session.get_bind().dialect.name != "sqlite":
        return
    driver_connection = session.connection().connection.driver_connection
    if not driver_connection.in_transaction:
        session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def atomic_scope(session):
    """
    One database transaction around a unit of work.

    Commits when the block finishes, rolls back and re-raises on any exception,
    so a failing stock call leaves no partial Order, Stock or Batch change.
    """
    begin_immediate(session)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def run_with_retry(func, *, session, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors propagate untouched.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
