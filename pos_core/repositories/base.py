"""
Base Repository over the Shared Persistence Context

Generic repository implementing the stage-then-commit contract used by every entity
repository. All repositories built for one container share a single SQLAlchemy Session:

- add(), update() and delete() only stage changes in the session
- save_changes() commits everything staged by any repository in one transaction
- queries never see staged changes (the session does not autoflush)
- soft-deleted rows are excluded from every read

Store rejections on commit (unique, check and foreign key constraints) roll the session
back and surface as PersistenceError. Query failures surface as DatabaseException
subclasses produced by handle_database_error().
"""

import time
import uuid
from typing import Any, Generic, List, Optional, Type, TypeVar

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from pos_core.data.entities import Base, utcnow
from pos_core.data.exceptions import (
    DatabaseOperationType,
    PersistenceError,
    handle_database_error,
)
from pos_core.monitoring.metrics import (
    database_commit_duration,
    repository_operations_total,
)


logger = structlog.get_logger(__name__)

EntityT = TypeVar('EntityT', bound=Base)


class BaseRepository(Generic[EntityT]):
    """
    Generic repository for soft-deletable entities.

    Subclasses set ``entity_class`` and add entity specific queries built on
    ``_active_query()`` and ``_fetch_all()`` / ``_fetch_one()``.
    """

    entity_class: Type[EntityT] = None

    def __init__(self, session: Session, metrics_enabled: bool = True):
        if session is None:
            raise ValueError("session is required")
        self.session = session
        self.metrics_enabled = metrics_enabled
        self.entity_name = self.entity_class.__name__

    # Query helpers

    def _active_query(self) -> Select:
        return select(self.entity_class).where(self.entity_class.is_deleted.is_(False))

    def _record(self, operation: str, status: str = 'success') -> None:
        if self.metrics_enabled:
            repository_operations_total.labels(
                entity=self.entity_name,
                operation=operation,
                status=status
            ).inc()

    def _fetch_all(self, statement: Select, operation: str) -> List[EntityT]:
        try:
            results = list(self.session.scalars(statement).unique().all())
        except SQLAlchemyError as e:
            self._record(operation, 'error')
            raise handle_database_error(e, DatabaseOperationType.READ, self.entity_name) from e

        self._record(operation)
        logger.debug(
            "Repository query executed",
            entity=self.entity_name,
            operation=operation,
            result_count=len(results)
        )
        return results

    def _fetch_one(self, statement: Select, operation: str) -> Optional[EntityT]:
        try:
            result = self.session.scalars(statement).unique().first()
        except SQLAlchemyError as e:
            self._record(operation, 'error')
            raise handle_database_error(e, DatabaseOperationType.READ, self.entity_name) from e

        self._record(operation)
        return result

    def _scalar(self, statement: Select, operation: str) -> Any:
        try:
            result = self.session.scalar(statement)
        except SQLAlchemyError as e:
            self._record(operation, 'error')
            raise handle_database_error(e, DatabaseOperationType.READ, self.entity_name) from e

        self._record(operation)
        return result

    # Generic operations

    def get_by_id(self, entity_id: uuid.UUID) -> Optional[EntityT]:
        """Get a persisted, non-deleted entity by primary key."""
        statement = self._active_query().where(self.entity_class.id == entity_id)
        return self._fetch_one(statement, 'get_by_id')

    def get_all(self) -> List[EntityT]:
        return self._fetch_all(self._active_query(), 'get_all')

    def find(self, *criteria) -> List[EntityT]:
        """
        Find non-deleted entities matching SQLAlchemy criteria.

        Example:
            repository.find(Customer.tier == MembershipTier.GOLD, Customer.is_active.is_(True))
        """
        statement = self._active_query().where(*criteria)
        return self._fetch_all(statement, 'find')

    def count(self) -> int:
        statement = (
            select(func.count())
            .select_from(self.entity_class)
            .where(self.entity_class.is_deleted.is_(False))
        )
        return int(self._scalar(statement, 'count') or 0)

    def add(self, entity: EntityT) -> EntityT:
        """Stage a new entity. Nothing is written until save_changes()."""
        if not isinstance(entity, self.entity_class):
            raise TypeError(
                f"{type(self).__name__} only accepts {self.entity_name} entities, "
                f"got {type(entity).__name__}"
            )
        self.session.add(entity)
        self._record('add')
        logger.debug("Entity staged for insert", entity=self.entity_name, entity_id=str(entity.id))
        return entity

    def update(self, entity: EntityT) -> EntityT:
        """Stage modifications of an entity, attaching it to the session if needed."""
        if entity not in self.session:
            entity = self.session.merge(entity)
        if hasattr(entity, 'updated_at'):
            entity.updated_at = utcnow()
        self._record('update')
        return entity

    def delete(self, entity_id: uuid.UUID) -> bool:
        """
        Stage a soft delete of the entity with the given id.

        Returns:
            False when no such (non-deleted) entity exists
        """
        entity = self.get_by_id(entity_id)
        if entity is None:
            logger.warning(
                "Entity not found for deletion",
                entity=self.entity_name,
                entity_id=str(entity_id)
            )
            self._record('delete', 'not_found')
            return False

        entity.mark_deleted()
        self._record('delete')
        return True

    def save_changes(self) -> int:
        """
        Commit all changes staged in the shared session.

        Returns:
            Number of entities inserted, updated or deleted

        Raises:
            PersistenceError: If the store rejects the write; the session is rolled back
        """
        affected = len(self.session.new) + len(self.session.dirty) + len(self.session.deleted)
        start_time = time.perf_counter()

        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            self._record('save_changes', 'rejected')
            raise PersistenceError(
                f"Store rejected changes: {e.orig}",
                entity=self.entity_name,
                original_error=e
            ) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            self._record('save_changes', 'error')
            raise handle_database_error(e, DatabaseOperationType.TRANSACTION, self.entity_name) from e
        finally:
            if self.metrics_enabled:
                database_commit_duration.observe(time.perf_counter() - start_time)

        self._record('save_changes')
        logger.debug("Changes committed", entity=self.entity_name, affected=affected)
        return affected

    def check_liveness(self) -> bool:
        """Liveness check: run a count query against the shared context."""
        self.count()
        return True
