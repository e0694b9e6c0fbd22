"""
Primary Store Repository

SQLAlchemy async implementation of BaseRepository. One table per entity
type (see tablekeeper.models); rows carry a surrogate pk next to the
logical id, so duplicated ids can exist until reconciliation removes them.

Reads always collapse duplicates to the canonical row: latest updated_at,
ties broken by the highest pk.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tablekeeper.core.errors import StoreUnavailable
from tablekeeper.database import Base
from tablekeeper.storage.base import BaseRepository, E, to_plain

logger = logging.getLogger(__name__)

# Driver errors that mean "the database is not there", as opposed to
# integrity or programming errors which must propagate unchanged.
UNREACHABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError, OSError)


class SqlRepository(BaseRepository[E]):
    """
    Primary store repository over one ORM model.

    Attributes:
        model: ORM class backing the entity
        session_maker: Factory for AsyncSession objects
    """

    def __init__(
        self,
        entity_name: str,
        entity_cls: type[E],
        model: type[Base],
        session_maker: async_sessionmaker[AsyncSession],
    ):
        super().__init__(entity_name, entity_cls)
        self.model = model
        self.session_maker = session_maker
        self._columns = {c.key for c in model.__table__.columns} - {"pk"}

    @property
    def provider_name(self) -> str:
        return "sql"

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a session, translating connectivity failures."""
        try:
            async with self.session_maker() as session:
                yield session
        except UNREACHABLE_ERRORS as e:
            logger.warning(f"Primary store unreachable ({self.entity_name}): {e}")
            raise StoreUnavailable(f"Primary store unreachable: {e}") from e

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def _to_values(self, data: dict[str, Any]) -> dict[str, Any]:
        unknown = set(data) - self._columns
        if unknown:
            raise ValueError(f"Unknown {self.entity_name} fields: {sorted(unknown)}")
        return {key: to_plain(value) for key, value in data.items()}

    def _to_entity(self, row: Any) -> E:
        return self.entity_cls.model_validate(row)

    def _canonical_order(self):
        return (self.model.updated_at.desc(), self.model.pk.desc())

    # =========================================================================
    # REPOSITORY CONTRACT
    # =========================================================================

    async def upsert(self, entity: E) -> E:
        values = self._to_values(entity.model_dump())

        async with self._session() as session:
            result = await session.execute(
                update(self.model)
                .where(self.model.id == entity.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(self.model(**values))
            await session.commit()

        logger.debug(f"Primary upsert {self.entity_name} #{entity.id}")
        return entity

    async def insert(self, entity: E) -> bool:
        """
        Store a new record without replacing another one.

        Writing the same record again (same id and created_at) refreshes
        it. Returns False when a different record already holds the id.
        """
        values = self._to_values(entity.model_dump())

        async with self._session() as session:
            result = await session.execute(
                select(self.model)
                .where(self.model.id == entity.id)
                .order_by(*self._canonical_order())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            if row is not None and self._to_entity(row).created_at != entity.created_at:
                logger.warning(f"Primary already holds a different {self.entity_name} #{entity.id}")
                return False

            if row is None:
                session.add(self.model(**values))
            else:
                await session.execute(
                    update(self.model)
                    .where(self.model.id == entity.id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()

        logger.debug(f"Primary insert {self.entity_name} #{entity.id}")
        return True

    async def update(
        self,
        entity_id: int,
        patch: dict[str, Any],
        expected: Optional[dict[str, Any]] = None,
    ) -> Optional[E]:
        values = self._to_values(patch)

        stmt = update(self.model).where(self.model.id == entity_id)
        for key, value in (expected or {}).items():
            stmt = stmt.where(getattr(self.model, key) == to_plain(value))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount == 0:
            return None
        return await self.find_by_id(entity_id)

    async def find_by_id(self, entity_id: int) -> Optional[E]:
        async with self._session() as session:
            result = await session.execute(
                select(self.model)
                .where(self.model.id == entity_id)
                .order_by(*self._canonical_order())
                .limit(1)
            )
            row = result.scalar_one_or_none()

        return self._to_entity(row) if row is not None else None

    async def find_all(self, filters: Optional[dict[str, Any]] = None) -> list[E]:
        query = select(self.model)
        for key, value in (filters or {}).items():
            query = query.where(getattr(self.model, key) == to_plain(value))
        query = query.order_by(self.model.id, *self._canonical_order())

        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()

        entities: list[E] = []
        seen: set[int] = set()
        for row in rows:
            if row.id in seen:
                continue
            seen.add(row.id)
            entities.append(self._to_entity(row))
        return entities

    async def delete(self, entity_id: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(self.model).where(self.model.id == entity_id)
            )
            await session.commit()
        return result.rowcount > 0

    async def health_check(self) -> bool:
        try:
            async with self._session() as session:
                await session.execute(select(func.count()).select_from(self.model))
            return True
        except StoreUnavailable:
            return False

    # =========================================================================
    # PRIMARY-ONLY OPERATIONS
    # =========================================================================

    async def list_rows(self, entity_id: Optional[int] = None) -> list[tuple[int, E]]:
        """
        Return every physical row as (pk, entity), duplicates included.

        Args:
            entity_id: Restrict to one logical id
        """
        query = select(self.model)
        if entity_id is not None:
            query = query.where(self.model.id == entity_id)
        query = query.order_by(self.model.id, self.model.pk)

        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()

        return [(row.pk, self._to_entity(row)) for row in rows]

    async def delete_rows(self, pks: list[int]) -> int:
        """Delete physical rows by surrogate key."""
        if not pks:
            return 0
        async with self._session() as session:
            result = await session.execute(
                delete(self.model).where(self.model.pk.in_(pks))
            )
            await session.commit()
        return result.rowcount

    async def max_id(self) -> int:
        """Highest logical id stored, 0 when empty."""
        async with self._session() as session:
            result = await session.execute(select(func.max(self.model.id)))
            return result.scalar() or 0
