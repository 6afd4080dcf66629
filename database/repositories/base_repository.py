import logging
from contextlib import contextmanager
from typing import Optional, TypeVar, Generic, Type

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from database.db_utils import get_db_connection
from database.repositories.exceptions import (
    RepositoryError,
    ConstraintViolationError,
    DatabaseConnectionError,
    DuplicateEntityError,
)

# Set up logger
logger = logging.getLogger(__name__)

# Type variable for ORM models
T = TypeVar("T")


def translate_integrity_error(e: IntegrityError) -> ConstraintViolationError:
    """Map a driver integrity error onto the repository exception hierarchy."""
    message = str(e).lower()
    if "unique constraint" in message or "duplicate key" in message:
        return DuplicateEntityError(f"Duplicate entity: {e.orig}")
    return ConstraintViolationError(f"Constraint violation: {e.orig}")


class BaseRepository(Generic[T]):
    """
    Base repository class providing common database operations and connection management.
    This class handles connection pooling, transaction management, and common CRUD operations.
    """

    def __init__(self, model_class: Type[T] = None, engine: Optional[Engine] = None):
        """
        Initialize the repository.

        Args:
            model_class: The SQLAlchemy model class this repository manages (optional)
            engine: Engine to use instead of the configured database (optional)
        """
        self._engine: Optional[Engine] = engine
        self.model_class = model_class
        self._session_factory = None

    @property
    def engine(self) -> Engine:
        """Lazy load the database engine."""
        if self._engine is None:
            self._engine = get_db_connection()
            if self._engine is None:
                raise DatabaseConnectionError("Failed to obtain database connection")
        return self._engine

    @property
    def session_factory(self):
        """Lazy load the session factory."""
        if self._session_factory is None:
            # Entities stay readable after the session closes
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory

    @contextmanager
    def session(self) -> Session:
        """
        Context manager for ORM sessions.
        Handles commit/rollback automatically.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.error(f"Integrity Error in session: {e.orig}")
            raise translate_integrity_error(e) from e
        except RepositoryError as e:
            session.rollback()
            logger.warning(f"Session rolled back: {e}")
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database Error in session: {e}")
            raise RepositoryError(f"Database error: {e}") from e
        except Exception as e:
            session.rollback()
            logger.error(f"Unexpected error in session: {e}")
            raise e
        finally:
            session.close()

    # Common CRUD Patterns

    def create(self, entity: T) -> T:
        """Create a new entity."""
        with self.session() as session:
            session.add(entity)
            session.flush()
            session.refresh(entity)
            return entity

    def get(self, entity_id) -> Optional[T]:
        """Get an entity by primary key."""
        with self.session() as session:
            return session.get(self.model_class, entity_id)
