# backend/lessonbook/repositories/base_repository.py
"""
Base repository for the lesson booking engine.

Every concrete repository wraps one mapped model and exposes lookups,
inserts and a handful of query helpers. Repositories flush but never
commit; the service layer owns the transaction boundary.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

ModelT = TypeVar("ModelT")

logger = logging.getLogger(__name__)


class IRepository(ABC, Generic[ModelT]):
    """Minimal data access contract shared by every repository."""

    @abstractmethod
    def get_by_id(self, id: str, for_update: bool = False) -> Optional[ModelT]:
        """Load one row by primary key."""

    @abstractmethod
    def create(self, **fields: Any) -> ModelT:
        """Insert a row and flush it so generated columns are populated."""

    @abstractmethod
    def exists(self, **criteria: Any) -> bool:
        """True when at least one row matches the criteria."""


class BaseRepository(IRepository[ModelT]):
    """
    Shared implementation over a single SQLAlchemy model.

    Attributes:
        db: SQLAlchemy session supplied by the owning service
        model: Mapped class this repository reads and writes
    """

    def __init__(self, db: Session, model: Type[ModelT]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str, for_update: bool = False) -> Optional[ModelT]:
        """
        Load one row by primary key.

        With ``for_update`` the row stays locked until the caller's
        transaction ends, and any stale identity-map copy is overwritten
        with the locked values. SQLite ignores the lock.
        """
        query = self.db.query(self.model).filter(self.model.id == id)
        if for_update:
            query = query.with_for_update().populate_existing()
        try:
            return query.first()
        except SQLAlchemyError as exc:
            self.logger.error("Lookup of %s %s failed: %s", self.model.__name__, id, exc)
            raise RepositoryException(f"Failed to load {self.model.__name__}: {exc}") from exc

    def create(self, **fields: Any) -> ModelT:
        """
        Insert a row.

        A constraint violation rolls the session back and surfaces as a
        RepositoryException chained to the IntegrityError, which callers
        detect with ``is_integrity_violation``.
        """
        instance = self.model(**fields)
        self.db.add(instance)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.logger.warning("Constraint rejected new %s: %s", self.model.__name__, exc.orig)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            self.logger.error("Insert of %s failed: %s", self.model.__name__, exc)
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {exc}") from exc
        return instance

    def exists(self, **criteria: Any) -> bool:
        return self.find_one_by(**criteria) is not None

    def find_one_by(self, **criteria: Any) -> Optional[ModelT]:
        """First row matching exact-value criteria, or None."""
        try:
            return self.db.query(self.model).filter_by(**criteria).first()
        except SQLAlchemyError as exc:
            self.logger.error("Filtered lookup on %s failed: %s", self.model.__name__, exc)
            raise RepositoryException(f"Failed to query {self.model.__name__}: {exc}") from exc

    # Helpers for subclass queries

    def _execute_query(self, query: Query) -> List[ModelT]:
        try:
            return query.all()
        except SQLAlchemyError as exc:
            self.logger.error("Query on %s failed: %s", self.model.__name__, exc)
            raise RepositoryException(f"Query failed: {exc}") from exc

    def _execute_scalar(self, query: Query) -> Any:
        try:
            return query.scalar()
        except SQLAlchemyError as exc:
            self.logger.error("Scalar query on %s failed: %s", self.model.__name__, exc)
            raise RepositoryException(f"Scalar query failed: {exc}") from exc


def is_integrity_violation(exc: BaseException) -> bool:
    """True when a RepositoryException wraps a unique or foreign-key violation."""
    return isinstance(exc, RepositoryException) and isinstance(exc.__cause__, IntegrityError)
