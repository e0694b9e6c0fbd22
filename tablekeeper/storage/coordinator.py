"""
Dual-Store Coordinator

Routes every operation on one entity type to the primary or the
fallback store:

- Writes go to the primary first. On success the record is mirrored to
  the fallback in the background; mirror failures are only logged.
- When the primary cannot be reached (driver error or timeout) the write
  lands in the fallback, flagged pending-sync, and the primary is
  skipped for a short cool-down.
- Reads prefer the primary and merge in pending-sync fallback records
  the primary has not caught up with.
- When both stores fail, StorageUnavailable is raised and nothing is
  written.

The reconciliation engine later replays pending-sync records and
removes duplicated ids from the primary.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from tablekeeper.core.errors import StorageUnavailable, StoreUnavailable
from tablekeeper.storage.base import E, matches, utcnow
from tablekeeper.storage.fallback import FileRepository
from tablekeeper.storage.locks import KeyedLock
from tablekeeper.storage.primary import SqlRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fresh ids tried before a create gives up
MAX_CREATE_ATTEMPTS = 3


class DualStoreCoordinator(Generic[E]):
    """
    Primary/fallback routing for one entity type.

    Attributes:
        primary: SQL repository (authoritative when reachable)
        fallback: File repository (mirror, and the store of record
            during outages)
        locks: Per-id locks shared by state transitions and
            reconciliation
    """

    def __init__(
        self,
        primary: SqlRepository[E],
        fallback: FileRepository[E],
        timeout: float = 3.0,
        retry_after: float = 5.0,
    ):
        self.primary = primary
        self.fallback = fallback
        self.timeout = timeout
        self.retry_after = retry_after
        self.entity_name = primary.entity_name
        self.locks = KeyedLock()

        self._primary_down_until = 0.0
        self._last_issued_id = 0
        self._mirrors: set[asyncio.Task] = set()

    # =========================================================================
    # PRIMARY HEALTH
    # =========================================================================

    @property
    def primary_available(self) -> bool:
        """False while the primary is in its cool-down after a failure."""
        return time.monotonic() >= self._primary_down_until

    def mark_primary_down(self) -> None:
        self._primary_down_until = time.monotonic() + self.retry_after

    def mark_primary_up(self) -> None:
        self._primary_down_until = 0.0

    async def _on_primary(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run one primary operation with the timeout and cool-down applied."""
        if not self.primary_available:
            raise StoreUnavailable("Primary store cooling down")
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self.mark_primary_down()
            logger.warning(f"Primary store timed out after {self.timeout}s ({self.entity_name})")
            raise StoreUnavailable("Primary store timed out") from e
        except StoreUnavailable:
            self.mark_primary_down()
            raise

    async def _on_fallback(self, action: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        except StoreUnavailable as e:
            logger.error(f"Both stores unavailable, cannot {action} {self.entity_name}: {e}")
            raise StorageUnavailable(
                f"Both stores are unavailable ({self.entity_name})",
                entity=self.entity_name,
            ) from e

    # =========================================================================
    # MIRRORING
    # =========================================================================

    def _mirror(self, entity: E) -> None:
        task = asyncio.create_task(self._write_mirror(entity))
        self._mirrors.add(task)
        task.add_done_callback(self._mirrors.discard)

    async def _write_mirror(self, entity: E) -> None:
        try:
            await self.fallback.upsert(entity, if_newer=True)
        except Exception:
            logger.exception(f"Mirror of {self.entity_name} #{entity.id} to fallback failed")

    async def drain(self) -> None:
        """Wait for outstanding mirror writes."""
        while self._mirrors:
            await asyncio.gather(*list(self._mirrors), return_exceptions=True)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def allocate_id(self) -> int:
        """
        Reserve a fresh logical id.

        The id is above both the fallback counter and the highest id in
        the primary, so a counter that missed writes (fallback down, or a
        mirror that failed) can never hand out an id already in use.
        The fallback counter is moved past the id issued.
        """
        try:
            primary_floor: Optional[int] = await self._on_primary(self.primary.max_id) + 1
        except StoreUnavailable:
            primary_floor = None

        floor = max(primary_floor or 1, self._last_issued_id + 1)
        try:
            allocated = await self.fallback.allocate_id(at_least=floor)
        except StoreUnavailable as e:
            if primary_floor is None:
                raise StorageUnavailable(
                    f"Both stores are unavailable ({self.entity_name})",
                    entity=self.entity_name,
                ) from e
            logger.warning(f"Fallback counter unavailable for {self.entity_name}, using primary: {e}")
            allocated = floor

        self._last_issued_id = allocated
        return allocated

    async def create(self, entity: E) -> E:
        """
        Store a new record.

        Never replaces a different record: if the id turns out to be
        taken, the record is stored under the next free id instead.
        Storing the same record twice is a no-op.
        """
        for _ in range(MAX_CREATE_ATTEMPTS):
            try:
                inserted = await self._on_primary(lambda: self.primary.insert(entity))
            except StoreUnavailable:
                logger.warning(f"Primary unavailable, {self.entity_name} #{entity.id} stored in fallback (pending sync)")
                inserted = await self._on_fallback(
                    "create",
                    lambda: self.fallback.insert(entity, pending_sync=True),
                )
                if inserted:
                    return entity
            else:
                if inserted:
                    self._mirror(entity)
                    return entity

            new_id = await self.allocate_id()
            logger.warning(f"{self.entity_name} #{entity.id} is taken, storing as #{new_id}")
            entity = entity.model_copy(update={"id": new_id})

        raise StorageUnavailable(
            f"No free id found for new {self.entity_name}",
            entity=self.entity_name,
        )

    async def update(
        self,
        entity_id: int,
        patch: dict[str, Any],
        expected: Optional[dict[str, Any]] = None,
    ) -> Optional[E]:
        """
        Apply a partial update, stamping updated_at.

        Returns None when no record matched (unknown id, or the expected
        values no longer hold).
        """
        patch = {**patch}
        patch.setdefault("updated_at", utcnow())

        try:
            updated = await self._on_primary(
                lambda: self.primary.update(entity_id, patch, expected)
            )
        except StoreUnavailable:
            logger.warning(f"Primary unavailable, {self.entity_name} #{entity_id} updated in fallback (pending sync)")
            return await self._on_fallback(
                "update",
                lambda: self.fallback.update(entity_id, patch, expected, pending_sync=True),
            )

        if updated is not None:
            self._mirror(updated)
            return updated

        # The newest copy may still be a pending-sync record in the fallback
        try:
            return await self.fallback.update(
                entity_id, patch, expected, pending_sync=True, only_pending=True
            )
        except StoreUnavailable as e:
            logger.warning(f"Could not check fallback for pending {self.entity_name} #{entity_id}: {e}")
            return None

    async def delete(self, entity_id: int) -> bool:
        """
        Remove every copy of a record.

        During an outage only the fallback copy can be removed; the
        primary rows stay until the next delete reaches it.
        """
        try:
            removed = await self._on_primary(lambda: self.primary.delete(entity_id))
        except StoreUnavailable:
            logger.warning(f"Primary unavailable, {self.entity_name} #{entity_id} deleted from fallback only")
            return await self._on_fallback("delete", lambda: self.fallback.delete(entity_id))

        try:
            removed = await self.fallback.delete(entity_id) or removed
        except StoreUnavailable as e:
            logger.warning(f"Fallback copy of {self.entity_name} #{entity_id} not deleted: {e}")
        return removed

    # =========================================================================
    # READS
    # =========================================================================

    async def _pending(self) -> dict[int, E]:
        try:
            return {e.id: e for e in await self.fallback.pending_records()}
        except StoreUnavailable as e:
            logger.warning(f"Pending {self.entity_name} records unreadable: {e}")
            return {}

    async def find_by_id(self, entity_id: int) -> Optional[E]:
        try:
            found = await self._on_primary(lambda: self.primary.find_by_id(entity_id))
        except StoreUnavailable:
            return await self._on_fallback("read", lambda: self.fallback.find_by_id(entity_id))

        pending = (await self._pending()).get(entity_id)
        if pending is not None and (found is None or pending.updated_at > found.updated_at):
            return pending
        return found

    async def find_all(self, filters: Optional[dict[str, Any]] = None) -> list[E]:
        try:
            rows = await self._on_primary(lambda: self.primary.find_all(filters))
        except StoreUnavailable:
            return await self._on_fallback("read", lambda: self.fallback.find_all(filters))

        merged = {e.id: e for e in rows}
        for entity_id, pending in (await self._pending()).items():
            current = merged.get(entity_id)
            if current is not None and current.updated_at >= pending.updated_at:
                continue
            if matches(pending, filters):
                merged[entity_id] = pending
            else:
                merged.pop(entity_id, None)
        return [merged[k] for k in sorted(merged)]

    async def health(self) -> dict[str, bool]:
        return {
            "primary": await self.primary.health_check(),
            "fallback": await self.fallback.health_check(),
        }
