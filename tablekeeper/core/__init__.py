"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from tablekeeper.core.config import get_settings, Settings, EnvironmentMode, setup_logging
from tablekeeper.core.errors import (
    TableKeeperError,
    ValidationError,
    NotFound,
    InvalidStateTransition,
    InvalidTransition,
    BlockedDate,
    OutsideOperatingHours,
    CapacityExceeded,
    CollaboratorUnavailable,
    StorageUnavailable,
    StoreUnavailable,
    ReconciliationConflict,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "setup_logging",
    "TableKeeperError",
    "ValidationError",
    "NotFound",
    "InvalidStateTransition",
    "InvalidTransition",
    "BlockedDate",
    "OutsideOperatingHours",
    "CapacityExceeded",
    "CollaboratorUnavailable",
    "StorageUnavailable",
    "StoreUnavailable",
    "ReconciliationConflict",
]
