"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from ..core.config import settings
from .engines import build_engine

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()


engine = build_engine(settings.database_url, echo=settings.db_echo)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


T = TypeVar("T")
# Lock contention and dropped connections; anything else is a real error.
_RETRYABLE_ERROR_SNIPPETS = (
    "deadlock detected",
    "could not serialize access",
    "database is locked",
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
)


def is_retryable_db_error(exc: OperationalError) -> bool:
    message = str(exc).lower()
    return any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS)


def _retry_delay(attempt: int) -> float:
    base = 0.1 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_db_retry(
    op_name: str,
    func: Callable[[], T],
    *,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a DB operation with retries for transient storage failures.

    ``func`` must run a whole transaction so that a retry starts from a clean
    session state.
    """

    attempts_allowed = max_attempts or settings.db_retry_max_attempts
    attempt = 1
    while True:
        try:
            return func()
        except OperationalError as exc:
            if attempt >= attempts_allowed or not is_retryable_db_error(exc):
                raise

            delay = _retry_delay(attempt)
            logger.warning(
                "Transient DB failure detected, retrying",
                extra={
                    "event": "db_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            sleep(delay)
            attempt += 1


__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "get_db",
    "is_retryable_db_error",
    "with_db_retry",
]
