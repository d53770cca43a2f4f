"""
Base Repository - Abstract base class for all repositories
Implements common database operations following the Repository Pattern.

Repositories never commit on their own: writes are flushed into the
session and the surrounding EngagementStore.transaction() decides whether
the whole unit commits or rolls back. SQLAlchemy errors propagate to that
boundary instead of being swallowed here.
"""

from abc import ABC
from typing import TypeVar, Generic, List, Optional, Dict, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy import desc, asc
from dataclasses import dataclass
from enum import Enum
import logging

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar('T')


class SortOrder(Enum):
    """Sort order options"""
    ASC = "asc"
    DESC = "desc"


@dataclass
class PaginationParams:
    """Parameters for pagination"""
    page: int = 1
    per_page: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def limit(self) -> int:
        return self.per_page


@dataclass
class PaginatedResult(Generic[T]):
    """Result of a paginated query"""
    items: List[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.per_page > 0 else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with common CRUD operations.

    Subclasses bind their model class in __init__ so callers only pass the
    session.
    """

    model_class: Type[T]

    def __init__(self, session: Session, model_class: Optional[Type[T]] = None):
        """
        Initialize repository with database session and model class.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        if model_class is not None:
            self.model_class = model_class

    # CREATE Operations

    def create(self, **kwargs) -> T:
        """
        Create a new entity and flush it so generated ids are available.

        Args:
            **kwargs: Attributes for the new entity

        Returns:
            Created entity instance
        """
        entity = self.model_class(**kwargs)
        self.session.add(entity)
        self.session.flush()
        logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
        return entity

    # READ Operations

    def get_by_id(self, entity_id) -> Optional[T]:
        """
        Get entity by ID.

        Returns:
            Entity instance or None if not found
        """
        return self.session.get(self.model_class, entity_id)

    def count(self, **filters) -> int:
        """Count entities matching filters"""
        return self._build_query(filters).count()

    def get_paginated(self,
                      pagination: PaginationParams,
                      filters: Optional[Dict[str, Any]] = None,
                      order_by: Optional[str] = None,
                      order: SortOrder = SortOrder.ASC) -> PaginatedResult[T]:
        """
        Get paginated results with optional filtering and ordering.

        Args:
            pagination: Pagination parameters
            filters: Dictionary of filters to apply (lists become IN clauses)
            order_by: Field name to order by
            order: Sort order

        Returns:
            PaginatedResult with items and metadata
        """
        query = self._build_query(filters)

        if order_by:
            order_field = getattr(self.model_class, order_by, None)
            if order_field is not None:
                query = query.order_by(
                    desc(order_field) if order == SortOrder.DESC else asc(order_field)
                )

        total = query.count()
        items = query.offset(pagination.offset).limit(pagination.limit).all()

        return PaginatedResult(
            items=items,
            total=total,
            page=pagination.page,
            per_page=pagination.per_page
        )

    # UPDATE Operations

    def update(self, entity: T, **updates) -> T:
        """
        Update an entity with new values and flush.

        Args:
            entity: Entity to update
            **updates: Field-value pairs to update

        Returns:
            Updated entity
        """
        for field, value in updates.items():
            if hasattr(entity, field):
                setattr(entity, field, value)
        self.session.flush()
        logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
        return entity

    # DELETE Operations

    def delete(self, entity: T) -> None:
        """Delete an entity and flush"""
        self.session.delete(entity)
        self.session.flush()
        logger.debug(f"Deleted {self.model_class.__name__} with id {entity.id}")

    # Helper Methods

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query with filters.

        Lists become IN clauses, None becomes IS NULL, anything else equality.
        Unknown field names are ignored.
        """
        query = self.session.query(self.model_class)

        if filters:
            for field, value in filters.items():
                column = getattr(self.model_class, field, None)
                if column is None:
                    continue
                if isinstance(value, (list, tuple, set, frozenset)):
                    query = query.filter(column.in_(list(value)))
                elif value is None:
                    query = query.filter(column.is_(None))
                else:
                    query = query.filter(column == value)

        return query
