# backend/lessonbook/services/base.py
"""
Base class for the booking engine's services.

Services share the caller's SQLAlchemy session and a clock. The outermost
``transaction()`` block on a session owns commit and rollback; inner
blocks join it.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models  # noqa: F401  registers every mapper
from ..core.clock import SystemClock, default_clock
from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_TXN_DEPTH_KEY = "lessonbook_txn_depth"
SLOW_OPERATION_SECONDS = 1.0

F = TypeVar("F", bound=Callable[..., Any])


class BaseService:
    def __init__(self, db: Session, clock: Optional[SystemClock] = None):
        """
        Args:
            db: Database session
            clock: Source of "now"; defaults to the system clock
        """
        self.db = db
        self.clock = clock or default_clock
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Run a unit of work on the shared session.

        Usage:
            with self.transaction():
                self.slot_repository.create(...)
                # committed when the outermost block exits

        Database errors roll back the whole unit and surface as
        ServiceException. Any other exception rolls back and propagates
        unchanged.
        """
        depth = self.db.info.get(_TXN_DEPTH_KEY, 0)
        self.db.info[_TXN_DEPTH_KEY] = depth + 1
        outermost = depth == 0
        try:
            yield self.db
            if outermost:
                self.db.commit()
        except SQLAlchemyError as exc:
            self.logger.error("Unit of work failed: %s", exc)
            if outermost:
                self.db.rollback()
            raise ServiceException(f"Database operation failed: {exc}") from exc
        except Exception:
            if outermost:
                self.db.rollback()
            raise
        finally:
            self.db.info[_TXN_DEPTH_KEY] = depth

    @property
    def in_transaction(self) -> bool:
        return self.db.info.get(_TXN_DEPTH_KEY, 0) > 0

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a service method and export the result to Prometheus.

        Usage:
            @BaseService.measure_operation("sign_off_lesson")
            def sign_off_lesson(self, lesson_id, instructor_id):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                error_type: Optional[str] = None
                try:
                    return func(self, *args, **kwargs)
                except Exception as exc:
                    error_type = type(exc).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - started
                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning("Slow operation: %s took %.2fs", operation_name, elapsed)
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="error" if error_type else "success",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator
