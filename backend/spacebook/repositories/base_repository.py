# backend/spacebook/repositories/base_repository.py
"""
Base Repository Pattern for the Spacebook booking engine.

Provides the foundation for all repository classes with:
- Common CRUD operations
- Type safety with generics
- Query builder helpers

Transactions are owned by the service layer: repositories flush but never
commit, and translate driver errors into RepositoryException.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import get_dialect_name

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    @property
    def is_postgres(self) -> bool:
        return self.dialect_name == "postgresql"

    def get_by_id(self, id: str, *, for_update: bool = False) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        ``for_update`` takes a row lock on PostgreSQL; other backends ignore it.
        """
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if for_update and self.is_postgres:
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

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
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}") from e

    def flush(self) -> None:
        """Flush pending ORM changes."""
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Flush failed for {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to persist {self.model.__name__}: {str(e)}") from e

    def find_by(self, **kwargs: Any) -> List[T]:
        """Find entities by exact-match criteria."""
        try:
            return self.db.query(self.model).filter_by(**kwargs).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find records: {str(e)}")

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        """Find a single entity by exact-match criteria."""
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding one by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find record: {str(e)}")

    # Protected helper methods for use by subclasses

    def _insert_if_absent(self, values: dict[str, Any], index_elements: list[str]) -> bool:
        """
        ``INSERT ... ON CONFLICT DO NOTHING`` on the given unique key.

        Returns True when this call inserted the row. The unique index is the
        only mutual exclusion needed between concurrent deliveries.
        """
        if self.is_postgres:
            stmt = pg_insert(self.model).values(**values)
        else:
            stmt = sqlite_insert(self.model).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Insert-if-absent failed for {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to insert {self.model.__name__}: {str(e)}") from e
        return bool(getattr(result, "rowcount", 0))

    def _build_query(self) -> Query:
        """Get base query for the model."""
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        """Execute query with error handling."""
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query execution error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")
