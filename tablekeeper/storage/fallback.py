"""
Fallback Store Repository with Concurrency Control

Local durable store used while the primary database is unreachable.
One JSON document per entity type:

    {
        "next_id": 42,
        "records": {"41": {...}, ...},
        "pending_sync": [40, 41]
    }

- next_id is the id counter shared by both stores; it always stays
  above every stored id
- pending_sync lists records written here that the primary has not
  seen yet

Every read-modify-write happens in a worker thread while holding a
FileLock, so several processes can share the directory. Each save also
refreshes a backup copy that is read when the main document is missing
or corrupt.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from filelock import FileLock, Timeout

from tablekeeper.core.errors import StoreUnavailable
from tablekeeper.storage.base import BaseRepository, E, matches, to_plain

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FileRepository(BaseRepository[E]):
    """File-backed repository for one entity type."""

    def __init__(
        self,
        entity_name: str,
        entity_cls: type[E],
        data_dir: Path,
        lock_timeout: float = 30,
    ):
        super().__init__(entity_name, entity_cls)
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / f"{entity_name}.json"
        self.backup_path = self.data_dir / f"{entity_name}.backup.json"
        self.lock_path = self.data_dir / f"{entity_name}.json.lock"
        self.lock_timeout = lock_timeout

    @property
    def provider_name(self) -> str:
        return "file"

    # =========================================================================
    # DOCUMENT I/O (runs in worker threads)
    # =========================================================================

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    @staticmethod
    def _empty_document() -> dict[str, Any]:
        return {"next_id": 1, "records": {}, "pending_sync": []}

    def _read_file(self, path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Error reading {path}: {e}")
            return None
        if not isinstance(doc, dict) or not isinstance(doc.get("records"), dict):
            logger.warning(f"Ignoring malformed document {path}")
            return None
        return doc

    def _load(self) -> dict[str, Any]:
        """Load the main document, then the backup, else start empty."""
        doc = self._read_file(self.path)
        if doc is None:
            doc = self._read_file(self.backup_path)
            if doc is not None:
                logger.warning(f"Loaded {self.entity_name} from backup copy")
        if doc is None:
            doc = self._empty_document()

        doc.setdefault("pending_sync", [])
        highest = max((int(k) for k in doc["records"]), default=0)
        doc["next_id"] = max(int(doc.get("next_id", 1)), highest + 1)
        return doc

    def _write_file(self, path: Path, data: str) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    def _save(self, doc: dict[str, Any]) -> None:
        doc["pending_sync"] = sorted(set(doc["pending_sync"]))
        data = json.dumps(doc, indent=2, sort_keys=True)
        self._write_file(self.path, data)
        self._write_file(self.backup_path, data)

    def _transact(self, fn: Callable[[dict[str, Any]], T], write: bool) -> T:
        try:
            self._ensure_data_dir()
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                doc = self._load()
                result = fn(doc)
                if write:
                    self._save(doc)
                return result
        except Timeout as e:
            logger.error(f"Lock timeout for {self.entity_name} ({self.lock_timeout}s)")
            raise StoreUnavailable(f"Fallback lock timeout ({self.lock_timeout}s)") from e
        except OSError as e:
            logger.error(f"Fallback store I/O error for {self.entity_name}: {e}")
            raise StoreUnavailable(f"Fallback store unavailable: {e}") from e

    async def _run(self, fn: Callable[[dict[str, Any]], T], write: bool = False) -> T:
        return await asyncio.to_thread(self._transact, fn, write)

    def _decode(self, raw: dict[str, Any]) -> E:
        return self.entity_cls.model_validate(raw)

    def _encode(self, entity: E) -> dict[str, Any]:
        return entity.model_dump(mode="json")

    # =========================================================================
    # REPOSITORY CONTRACT
    # =========================================================================

    async def upsert(
        self,
        entity: E,
        pending_sync: bool = False,
        if_newer: bool = False,
    ) -> E:
        """
        Store a complete record.

        Args:
            entity: Record to store
            pending_sync: Flag the record for replay into the primary
            if_newer: Skip the write when the stored copy has a later
                updated_at (used by mirroring, where writes may arrive
                out of order)
        """
        def apply(doc: dict[str, Any]) -> E:
            key = str(entity.id)
            existing = doc["records"].get(key)
            if if_newer and existing is not None:
                current = self._decode(existing)
                if current.updated_at > entity.updated_at:
                    logger.debug(f"Skipped stale mirror of {self.entity_name} #{entity.id}")
                    return current

            doc["records"][key] = self._encode(entity)
            doc["next_id"] = max(doc["next_id"], entity.id + 1)
            if pending_sync:
                doc["pending_sync"].append(entity.id)
            elif entity.id in doc["pending_sync"]:
                doc["pending_sync"].remove(entity.id)
            return entity

        return await self._run(apply, write=True)

    async def update(
        self,
        entity_id: int,
        patch: dict[str, Any],
        expected: Optional[dict[str, Any]] = None,
        pending_sync: bool = False,
        only_pending: bool = False,
    ) -> Optional[E]:
        """
        Apply a partial update.

        Args:
            pending_sync: Flag the record for replay into the primary
            only_pending: Only touch records that are still pending-sync
        """
        def apply(doc: dict[str, Any]) -> Optional[E]:
            raw = doc["records"].get(str(entity_id))
            if raw is None:
                return None
            if only_pending and entity_id not in doc["pending_sync"]:
                return None

            current = self._decode(raw)
            if expected and not matches(current, expected):
                return None

            merged = {**current.model_dump(), **{k: to_plain(v) for k, v in patch.items()}}
            updated = self.entity_cls.model_validate(merged)
            doc["records"][str(entity_id)] = self._encode(updated)
            if pending_sync:
                doc["pending_sync"].append(entity_id)
            return updated

        return await self._run(apply, write=True)

    async def find_by_id(self, entity_id: int) -> Optional[E]:
        raw = await self._run(lambda doc: doc["records"].get(str(entity_id)))
        return self._decode(raw) if raw is not None else None

    async def find_all(self, filters: Optional[dict[str, Any]] = None) -> list[E]:
        records = await self._run(lambda doc: list(doc["records"].values()))
        entities = [self._decode(raw) for raw in records]
        return sorted(
            (e for e in entities if matches(e, filters)),
            key=lambda e: e.id,
        )

    async def delete(self, entity_id: int) -> bool:
        def apply(doc: dict[str, Any]) -> bool:
            removed = doc["records"].pop(str(entity_id), None) is not None
            if entity_id in doc["pending_sync"]:
                doc["pending_sync"].remove(entity_id)
            return removed

        return await self._run(apply, write=True)

    async def health_check(self) -> bool:
        try:
            await self._run(lambda doc: True)
            return True
        except StoreUnavailable:
            return False

    # =========================================================================
    # FALLBACK-ONLY OPERATIONS
    # =========================================================================

    async def allocate_id(self, at_least: int = 1) -> int:
        """
        Reserve the next id atomically.

        Args:
            at_least: Lowest acceptable id (ids already used elsewhere
                are below it); the counter moves past it
        """
        def apply(doc: dict[str, Any]) -> int:
            allocated = max(doc["next_id"], at_least)
            doc["next_id"] = allocated + 1
            return allocated

        return await self._run(apply, write=True)

    async def insert(self, entity: E, pending_sync: bool = False) -> bool:
        """
        Store a new record without replacing another one.

        Returns False when a different record (other created_at) already
        holds the id.
        """
        def apply(doc: dict[str, Any]) -> bool:
            raw = doc["records"].get(str(entity.id))
            if raw is not None and self._decode(raw).created_at != entity.created_at:
                logger.warning(f"Fallback already holds a different {self.entity_name} #{entity.id}")
                return False

            doc["records"][str(entity.id)] = self._encode(entity)
            doc["next_id"] = max(doc["next_id"], entity.id + 1)
            if pending_sync:
                doc["pending_sync"].append(entity.id)
            return True

        return await self._run(apply, write=True)

    async def pending_records(self) -> list[E]:
        """Records written here that the primary has not seen."""
        def collect(doc: dict[str, Any]) -> list[dict[str, Any]]:
            return [
                doc["records"][str(i)]
                for i in sorted(set(doc["pending_sync"]))
                if str(i) in doc["records"]
            ]

        return [self._decode(raw) for raw in await self._run(collect)]

    async def clear_pending(self, entity_id: int, updated_at: datetime) -> bool:
        """
        Drop the pending-sync flag, unless the record changed again since
        it was replayed.
        """
        def apply(doc: dict[str, Any]) -> bool:
            raw = doc["records"].get(str(entity_id))
            if raw is None or self._decode(raw).updated_at != updated_at:
                return False
            doc["pending_sync"] = [i for i in doc["pending_sync"] if i != entity_id]
            return True

        return await self._run(apply, write=True)
