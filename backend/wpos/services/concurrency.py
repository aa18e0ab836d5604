# Overview: Locking and retry primitives shared by the sale engine services.

from __future__ import annotations

import random
import time
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import SaleTimeoutError, TransientError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    Take the SQLite write lock up front so concurrent writers queue on the
    busy timeout instead of failing mid-transaction. No-op elsewhere.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def is_transient_error(exc: BaseException) -> bool:
    """
    Connection drops, lock timeouts, deadlocks and optimistic-lock conflicts.
    IntegrityError and other DBAPI errors are not transient.
    """
    if isinstance(exc, (TransientError, OperationalError, StaleDataError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


def compute_backoff(attempt: int, *, base_delay: float, max_delay: float) -> float:
    """base * 2^attempt, jittered by +/-10%, capped at max_delay."""
    delay = base_delay * (2 ** attempt) * random.uniform(0.9, 1.1)
    return min(max_delay, delay)


def run_with_retry(
    func: Callable,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    max_delay: float = 2.0,
    deadline: Optional[float] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    rollback: bool = True,
):
    """
    Execute a DB operation with retry on transient failures.

    ``attempts`` is the total number of tries, not the number of retries.
    ``deadline`` is a time.monotonic() value; a retry that would sleep past it
    raises SaleTimeoutError instead. Pass ``rollback=False`` when func runs in
    a savepoint that already undoes its own work, so the enclosing
    transaction survives.
    """
    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            if not is_transient_error(exc):
                raise
            if rollback:
                db.session.rollback()
            if attempt >= attempts - 1:
                raise
            delay = compute_backoff(attempt, base_delay=backoff_base, max_delay=max_delay)
            if deadline is not None and time.monotonic() + delay > deadline:
                raise SaleTimeoutError("retry backoff") from exc
            if on_retry is not None:
                on_retry(attempt + 1, exc, delay)
            if delay > 0:
                time.sleep(delay)
    raise ValueError("attempts must be at least 1")

