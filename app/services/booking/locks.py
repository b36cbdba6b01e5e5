# app/services/booking/locks.py
"""Per-business serialisation of the booking check-then-insert"""
import threading
from contextlib import contextmanager
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.deadline import Deadline
from app.core.exceptions import DeadlineExceeded

# lock_not_available, query_canceled
_PG_TIMEOUT_CODES = {"55P03", "57014"}

_local_locks: Dict[str, threading.Lock] = {}
_registry_guard = threading.Lock()


def _local_lock(key: str) -> threading.Lock:
    with _registry_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = _local_locks[key] = threading.Lock()
        return lock


def is_timeout_error(exc: OperationalError) -> bool:
    return getattr(exc.orig, "pgcode", None) in _PG_TIMEOUT_CODES


def apply_statement_deadline(db: Session, deadline: Optional[Deadline]) -> None:
    """Bound every statement of the current PostgreSQL transaction by the caller's deadline"""
    if deadline is None or db.get_bind().dialect.name != "postgresql":
        return
    remaining_ms = str(max(1, int(deadline.remaining() * 1000)))
    db.execute(text("SELECT set_config('statement_timeout', :ms, true)"), {"ms": remaining_ms})
    db.execute(text("SELECT set_config('lock_timeout', :ms, true)"), {"ms": remaining_ms})


@contextmanager
def business_lock(db: Session, business_id: str, deadline: Optional[Deadline] = None):
    """
    Hold the booking lock of one business until the block exits.

    PostgreSQL: transaction-scoped advisory lock, released by the commit or
    rollback that ends the caller's transaction, so the commit must happen
    inside the block. Other dialects: process-local lock keyed by business.
    Businesses never contend with each other.
    """
    if db.get_bind().dialect.name == "postgresql":
        db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"booking:{business_id}"},
        )
        yield
        return

    lock = _local_lock(business_id)
    timeout = deadline.remaining() if deadline is not None else -1
    if not lock.acquire(timeout=timeout):
        raise DeadlineExceeded(f"Timed out waiting for the booking lock of business {business_id}")
    try:
        yield
    finally:
        lock.release()
