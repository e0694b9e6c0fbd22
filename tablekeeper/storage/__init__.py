"""
Storage package.

Two repositories behind one contract (primary SQL, fallback JSON files)
and the coordinator that routes between them.
"""

from tablekeeper.storage.base import BaseRepository, matches, to_plain, utcnow
from tablekeeper.storage.coordinator import DualStoreCoordinator
from tablekeeper.storage.fallback import FileRepository
from tablekeeper.storage.locks import KeyedLock
from tablekeeper.storage.primary import SqlRepository

__all__ = [
    "BaseRepository",
    "DualStoreCoordinator",
    "FileRepository",
    "KeyedLock",
    "SqlRepository",
    "matches",
    "to_plain",
    "utcnow",
]
