# backend/carshare/repositories/base_repository.py
"""
Base Repository Pattern for the carshare backend.

Provides the foundation for all repository classes with:
- Common CRUD operations
- Type safety with generics
- Explicit soft-delete filtering (``include_deleted``) on every lookup
- Row locking helpers (``FOR UPDATE`` on PostgreSQL)

Repositories never commit; transaction boundaries belong to services.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import get_dialect_name

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Concrete base repository with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        """
        Initialize repository with database session and model.

        Args:
            db: SQLAlchemy session (managed by service layer)
            model: SQLAlchemy model class
        """
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    @property
    def is_soft_deletable(self) -> bool:
        return hasattr(self.model, "is_deleted")

    def get_by_id(
        self,
        id: str,
        *,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        Soft-deleted rows are excluded unless ``include_deleted`` is set.
        ``for_update`` takes a row lock where the dialect supports it.
        """
        try:
            query = self._build_query(include_deleted=include_deleted).filter(self.model.id == id)
            if for_update:
                query = self._lock(query)
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}") from e

    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError as exc:
            self.logger.error(
                "Integrity error creating %s: %s", self.model.__name__, exc, exc_info=True
            )
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}") from e

    def flush(self) -> None:
        """Flush pending ORM changes."""
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error flushing {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to flush {self.model.__name__}: {str(e)}") from e

    def exists(self, *, include_deleted: bool = False, **kwargs: Any) -> bool:
        try:
            query = self._build_query(include_deleted=include_deleted).filter_by(**kwargs)
            return query.first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking existence: {str(e)}")
            raise RepositoryException(f"Failed to check existence: {str(e)}") from e

    def find_one_by(self, *, include_deleted: bool = False, **kwargs: Any) -> Optional[T]:
        try:
            return self._build_query(include_deleted=include_deleted).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding one by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find record: {str(e)}") from e

    # Protected helper methods for use by subclasses

    def _build_query(self, *, include_deleted: bool = False) -> Query:
        """Base query for the model, excluding soft-deleted rows by default."""
        query = self.db.query(self.model)
        if self.is_soft_deletable and not include_deleted:
            query = query.filter(self.model.is_deleted.is_(False))
        return query

    def _lock(self, query: Query) -> Query:
        """Apply ``FOR UPDATE`` on PostgreSQL; SQLite serialises writers already."""
        if self.dialect_name == "postgresql":
            return query.with_for_update()
        return query

    def _execute_query(self, query: Query) -> List[T]:
        """Execute query with error handling."""
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query execution error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}") from e

    def _execute_scalar(self, query: Query) -> Any:
        """Execute scalar query with error handling."""
        try:
            return query.scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"Scalar query error: {str(e)}")
            raise RepositoryException(f"Scalar query failed: {str(e)}") from e
