"""
Reconciliation Engine

Brings the two stores back to one record per id. For each entity type:

1. Sync: replay pending-sync fallback records into the primary and
   clear their flag. If the primary already holds a newer copy, that
   copy wins and overwrites the fallback. A pending record whose id is
   held by a different record in the primary is moved to a fresh id.
2. Collapse: group primary rows by logical id. In every group with more
   than one row keep the canonical row (latest updated_at, then highest
   pk), delete the others, and overwrite the fallback copy with it.

Records are replaced whole, never merged field by field. Running the
pass again on clean data changes nothing.

Passes never overlap: a file lock in the data directory serializes the
API, every worker and the beat schedule. Writes that commit while a
pass runs are kept, since primary replays are compare-and-swap and
fallback refreshes only ever move a record forward.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from collections import defaultdict
from pathlib import Path

from filelock import FileLock, Timeout

from tablekeeper.core.errors import ReconciliationConflict, StoreUnavailable
from tablekeeper.schemas import Entity, ReconciliationReport
from tablekeeper.storage import DualStoreCoordinator, utcnow

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Replays pending writes and removes duplicated ids."""

    def __init__(
        self,
        stores: dict[str, DualStoreCoordinator],
        lock_path: Path,
        lock_timeout: float = 10,
    ):
        self.stores = stores
        self.lock_path = Path(lock_path)
        self.lock_timeout = lock_timeout
        self._run_lock = asyncio.Lock()
        # Acquired in a worker thread, released on the event loop
        self._file_lock = FileLock(str(self.lock_path), timeout=lock_timeout, thread_local=False)

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def _acquire(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file_lock.acquire()

    async def run(self) -> ReconciliationReport:
        """
        Run one full pass over every entity type.

        Waits up to lock_timeout for a pass running elsewhere; after that
        the call returns a report flagged skipped.
        """
        async with self._run_lock:
            try:
                await asyncio.to_thread(self._acquire)
            except Timeout:
                logger.warning(f"Reconciliation skipped, another pass holds {self.lock_path.name}")
                now = utcnow()
                return ReconciliationReport(started_at=now, finished_at=now, skipped=True)

            try:
                report = await self._run_pass()
            finally:
                self._file_lock.release()

        logger.info(
            f"Reconciliation finished: {report.records_synced} synced, "
            f"{report.duplicates_found} duplicated ids, {report.records_removed} rows removed"
        )
        return report

    async def _run_pass(self) -> ReconciliationReport:
        report = ReconciliationReport(started_at=utcnow())
        logger.info("Reconciliation pass started")

        if not await self._primary_reachable():
            report.primary_available = False
            report.finished_at = utcnow()
            logger.warning("Reconciliation skipped, primary store unreachable")
            return report

        for name, store in self.stores.items():
            try:
                synced, conflicts = await self._sync_pending(store)
                found, removed = await self._collapse(store)
            except StoreUnavailable as e:
                logger.error(f"Reconciliation of {name} aborted, primary store lost: {e}")
                store.mark_primary_down()
                report.primary_available = False
                break

            report.entities[name] = {
                "records_synced": synced,
                "conflicts_resolved": conflicts,
                "duplicates_found": found,
                "records_removed": removed,
            }
            report.records_synced += synced
            report.conflicts_resolved += conflicts
            report.duplicates_found += found
            report.records_removed += removed

        report.finished_at = utcnow()
        return report

    async def _primary_reachable(self) -> bool:
        for store in self.stores.values():
            if not await store.primary.health_check():
                return False
            store.mark_primary_up()
        return True

    # =========================================================================
    # SYNC
    # =========================================================================

    async def _sync_pending(self, store: DualStoreCoordinator) -> tuple[int, int]:
        synced = conflicts = 0

        try:
            pending = await store.fallback.pending_records()
        except StoreUnavailable as e:
            logger.warning(f"Pending {store.entity_name} records unreadable: {e}")
            return 0, 0

        for record in pending:
            async with store.locks.hold(record.id):
                fresh = await store.fallback.find_by_id(record.id)
                if fresh is None:
                    continue
                try:
                    await self._replay(store, fresh)
                    synced += 1
                except ReconciliationConflict as e:
                    logger.warning(f"{e.message}; keeping the primary copy")
                    winner = await store.primary.find_by_id(fresh.id)
                    await store.fallback.upsert(winner)
                    conflicts += 1

        if synced:
            logger.info(f"Synced {synced} pending {store.entity_name} record(s) to primary")
        return synced, conflicts

    async def _replay(self, store: DualStoreCoordinator, record: Entity) -> None:
        current = await store.primary.find_by_id(record.id)
        if current is None:
            if await store.primary.insert(record):
                await store.fallback.clear_pending(record.id, record.updated_at)
                return
            current = await store.primary.find_by_id(record.id)

        if current.created_at != record.created_at:
            await self._relocate(store, record, current)
            return

        if current.updated_at > record.updated_at:
            raise ReconciliationConflict(
                f"Primary holds a newer {store.entity_name} #{record.id}",
                entity=store.entity_name,
                entity_id=record.id,
            )

        replaced = await store.primary.update(
            record.id,
            record.model_dump(exclude={"id"}),
            expected={"updated_at": current.updated_at},
        )
        if replaced is None:
            raise ReconciliationConflict(
                f"{store.entity_name} #{record.id} changed in the primary during replay",
                entity=store.entity_name,
                entity_id=record.id,
            )
        await store.fallback.clear_pending(record.id, record.updated_at)

    async def _relocate(self, store: DualStoreCoordinator, record: Entity, holder: Entity) -> None:
        """Give a pending record a fresh id; the primary record keeps the old one."""
        new_id = await store.allocate_id()
        moved = record.model_copy(update={"id": new_id})
        logger.warning(
            f"{store.entity_name} #{record.id} belongs to another record in the primary; "
            f"pending copy stored as #{new_id}"
        )
        await store.primary.insert(moved)
        await store.fallback.upsert(moved)
        await store.fallback.upsert(holder)

    # =========================================================================
    # COLLAPSE
    # =========================================================================

    async def _collapse(self, store: DualStoreCoordinator) -> tuple[int, int]:
        groups: dict[int, int] = defaultdict(int)
        for _, entity in await store.primary.list_rows():
            groups[entity.id] += 1

        found = removed = 0
        for entity_id in sorted(i for i, count in groups.items() if count > 1):
            async with store.locks.hold(entity_id):
                rows = await store.primary.list_rows(entity_id)
                if len(rows) < 2:
                    continue

                found += 1
                canonical_pk, canonical = max(rows, key=lambda row: (row[1].updated_at, row[0]))
                stale = [pk for pk, _ in rows if pk != canonical_pk]
                removed += await store.primary.delete_rows(stale)

                # Another process may have updated the record since list_rows
                latest = await store.primary.find_by_id(entity_id) or canonical
                try:
                    await store.fallback.upsert(latest, if_newer=True)
                except StoreUnavailable as e:
                    logger.warning(f"Fallback copy of {store.entity_name} #{entity_id} not refreshed: {e}")

                logger.info(
                    f"Collapsed {len(rows)} rows of {store.entity_name} #{entity_id} "
                    f"into pk={canonical_pk}"
                )

        return found, removed
