"""
Base Repository - shared data access for the booking and tracking tables
Services receive repositories and never touch the session directly.
"""

from datetime import datetime
from typing import TypeVar, Generic, Optional, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BaseRepository(Generic[T]):
    """
    Create, read and retention-delete for one model.

    Attempt-log rows and alerts are written once and only ever removed by
    retention cleanup, so there is no generic update.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Args:
            session: SQLAlchemy session (db.session in the app)
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    def create(self, **kwargs) -> T:
        """
        Add a new row and flush it.

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    def get_by_id(self, entity_id: Any) -> Optional[T]:
        """Row by primary key, or None (also None when the lookup fails)"""
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} {entity_id}: {e}")
            return None

    def count(self, **filters) -> int:
        query: Query = self.session.query(self.model_class)
        for field, value in filters.items():
            query = query.filter(getattr(self.model_class, field) == value)
        return query.count()

    def delete_created_before(self, cutoff: datetime) -> int:
        """
        Retention delete on created_at, committed.

        Returns:
            Number of rows deleted
        """
        deleted = self.session.query(self.model_class)\
            .filter(self.model_class.created_at < cutoff)\
            .delete(synchronize_session=False)
        self.commit()
        return deleted

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()
