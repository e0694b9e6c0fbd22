"""
Repository Abstract Base Class

Defines the contract both stores implement, so the coordinator can run
any operation against either one.

Design Pattern: Strategy Pattern
    - SqlRepository talks to the primary database
    - FileRepository keeps the local fallback documents
    - DualStoreCoordinator picks one per call

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

from tablekeeper.schemas import Entity

E = TypeVar("E", bound=Entity)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_plain(value: Any) -> Any:
    """Reduce enums and nested models to values both stores understand."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def matches(entity: Entity, filters: Optional[dict[str, Any]]) -> bool:
    """Equality match of an entity against a filter mapping."""
    for key, expected in (filters or {}).items():
        actual = to_plain(getattr(entity, key))
        expected = to_plain(expected)
        if isinstance(actual, (date, time)) and isinstance(expected, str):
            actual = actual.isoformat()
        if actual != expected:
            return False
    return True


class BaseRepository(ABC, Generic[E]):
    """
    Abstract base class for entity repositories.

    Every method works on one entity type, identified by its logical id.
    Implementations raise StoreUnavailable when their backend cannot be
    reached and never let driver exceptions escape.

    Example:
        >>> repo = orders_primary  # SqlRepository or FileRepository
        >>> await repo.upsert(order)
        >>> same = await repo.find_by_id(order.id)
    """

    def __init__(self, entity_name: str, entity_cls: type[E]):
        self.entity_name = entity_name
        self.entity_cls = entity_cls

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the backend.

        Returns:
            str: Provider name (e.g., "sql", "file")
        """
        pass

    @abstractmethod
    async def upsert(self, entity: E) -> E:
        """
        Create the record or replace the one stored under the same id.

        Args:
            entity: Complete record, id included

        Returns:
            The stored entity
        """
        pass

    @abstractmethod
    async def update(
        self,
        entity_id: int,
        patch: dict[str, Any],
        expected: Optional[dict[str, Any]] = None,
    ) -> Optional[E]:
        """
        Apply a partial update.

        Args:
            entity_id: Logical id
            patch: Field values to write
            expected: Field values the stored record must still hold
                (compare-and-swap guard)

        Returns:
            The updated entity, or None when no record matched
        """
        pass

    @abstractmethod
    async def find_by_id(self, entity_id: int) -> Optional[E]:
        """Return the record for an id, or None."""
        pass

    @abstractmethod
    async def find_all(self, filters: Optional[dict[str, Any]] = None) -> list[E]:
        """
        Return every record matching the equality filters, one per id,
        ordered by id.
        """
        pass

    @abstractmethod
    async def delete(self, entity_id: int) -> bool:
        """Delete every record stored under an id."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify the backend is reachable.

        Returns:
            bool: True if reads and writes can be served
        """
        pass
