# backend/tutorcart/services/base.py
"""
Base Service Pattern

Provides common functionality for all service classes including:
- Transaction management with bounded retries
- Logging
- Performance monitoring
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, TypeVar, cast

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.exceptions import ServiceException
from ..database import is_retryable_db_error, with_db_retry
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Database session management
    - Logging
    - Transaction handling
    - Performance monitoring
    """

    def __init__(self, db: Session, clock: Clock | None = None):
        """
        Initialize base service.

        Args:
            db: Database session
            clock: Time source; defaults to the system clock
        """
        self.db = db
        self.clock: Clock = clock or system_clock
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for database transactions.

        Usage:
            with self.transaction():
                # Do multiple operations
                self.db.add(entity)
                # Note: commit is handled automatically
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except OperationalError as e:
            self.db.rollback()
            if is_retryable_db_error(e):
                # Surface to the retry loop untouched
                raise
            self.logger.error(f"Transaction failed: {str(e)}")
            raise ServiceException(f"Database operation failed: {str(e)}")
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {str(e)}")
        except Exception:
            self.db.rollback()
            raise

    def run_in_transaction(self, op_name: str, func: Callable[[], T]) -> T:
        """
        Run ``func`` inside one transaction, retrying transient storage failures.

        Each attempt starts from a rolled-back session, so a retried attempt
        never sees half of a previous write.
        """

        def _attempt() -> T:
            with self.transaction():
                return func()

        try:
            return with_db_retry(op_name, _attempt)
        except OperationalError as e:
            self.logger.error(
                "Transaction retries exhausted",
                extra={"event": "db_retry_exhausted", "op": op_name, "error": str(e)},
            )
            raise ServiceException(
                "The service is temporarily unavailable, please retry",
                code="STORAGE_UNAVAILABLE",
            ) from e

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("add_item")
            def add_item(self, data):
                # Method implementation
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                start_time = time.time()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time

                    # Only log if it's actually slow
                    if elapsed > 1.0:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )

                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator
