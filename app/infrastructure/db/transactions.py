"""
Unit-of-work helper: run a mutation as one committed transaction.

    def _apply():
        ...   # query, add, flush
        return result

    result = run_in_transaction(db, _apply)

``fn`` must (re)load every row it touches, because a retry starts from a
rolled-back session.
"""
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from app.application.errors import ConflictError
from app.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {UNIQUE_VIOLATION, "40001", "40P01"}

# SQLite reports no SQLSTATE, only the message
_SQLITE_MESSAGES = {
    "UNIQUE constraint failed": UNIQUE_VIOLATION,
    "FOREIGN KEY constraint failed": FOREIGN_KEY_VIOLATION,
}


def sqlstate_of(exc: DBAPIError) -> str | None:
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate:
        return sqlstate
    message = str(exc.orig)
    for prefix, code in _SQLITE_MESSAGES.items():
        if message.startswith(prefix):
            return code
    return None


def run_in_transaction(db: Session, fn: Callable[[], T], attempts: int | None = None) -> T:
    """
    Execute ``fn`` and commit once. Everything ``fn`` wrote is rolled back if
    it raises or the commit fails.

    Unique violations, serialization failures and deadlocks are retried; they
    come from concurrent writers racing for the same row or position.

    Raises:
        ConflictError: a foreign key still points at a deleted row, or
            concurrent writers kept colliding after all attempts
    """
    if attempts is None:
        attempts = get_settings().TRANSACTION_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            result = fn()
            db.commit()
            return result
        except (IntegrityError, OperationalError) as exc:
            db.rollback()
            sqlstate = sqlstate_of(exc)
            if sqlstate == FOREIGN_KEY_VIOLATION:
                logger.warning("Foreign key violation: %s", exc.orig)
                raise ConflictError("The record is still referenced by other data") from exc
            if sqlstate not in RETRYABLE_SQLSTATES:
                raise
            logger.warning("Transaction conflict (attempt %s/%s): %s", attempt, attempts, exc.orig)
        except Exception:
            db.rollback()
            raise
    raise ConflictError("The resource was modified concurrently, please retry")
