"""
Base repository class for data access layer.

Services talk to repositories instead of building queries inline, so query
logic for each table lives in one place and can be mocked in tests.

Example:
    class BetRepository(BaseRepository[Bet]):
        def find_by_external_id(self, user_id: str, external_bet_id: str) -> Optional[Bet]:
            return self.where_first(
                Bet.user_id == user_id,
                Bet.external_bet_id == external_bet_id,
            )
"""
import uuid
from abc import ABC
from datetime import datetime
from typing import TypeVar, Generic, Type, Optional, List
from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Base repository class providing common data access methods.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # CRUD Operations
    # ========================================================================

    def find_by_id(self, id: str) -> Optional[T]:
        """Find a single record by ID."""
        return self.db.query(self.model_type).filter(self.model_type.id == id).first()

    def create(self, **kwargs) -> T:
        """
        Create a new record with a generated UUID primary key.

        Returns:
            The created record (added to the session, not yet committed)
        """
        kwargs.setdefault("id", str(uuid.uuid4()))
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def update_fields(self, instance: T, **kwargs) -> T:
        """Set attributes on an existing record and bump ``updated_at``."""
        for key, value in kwargs.items():
            setattr(instance, key, value)
        if hasattr(instance, "updated_at"):
            instance.updated_at = datetime.utcnow()
        return instance

    # ========================================================================
    # Query Builders
    # ========================================================================

    def query(self) -> Query:
        """Get a new query object for this model."""
        return self.db.query(self.model_type)

    def where(self, *criterion) -> List[T]:
        return self.db.query(self.model_type).filter(*criterion).all()

    def where_first(self, *criterion) -> Optional[T]:
        return self.db.query(self.model_type).filter(*criterion).first()

    def count(self, *criterion) -> int:
        """Count records, optionally filtered."""
        query = self.db.query(self.model_type)
        if criterion:
            query = query.filter(*criterion)
        return query.count()

    # ========================================================================
    # Save Operations
    # ========================================================================

    def save(self) -> None:
        """Commit pending changes to the database."""
        self.db.commit()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.db.flush()

    def rollback(self) -> None:
        """Rollback pending changes."""
        self.db.rollback()
