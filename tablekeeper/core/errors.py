"""
Error Taxonomy

Every error the core raises derives from TableKeeperError. Each class
carries the HTTP status the API layer answers with, so routes never
translate errors by hand.

Business-rule and validation errors leave all state unchanged.
StorageUnavailable is the only fatal condition. StoreUnavailable and
ReconciliationConflict are internal: the coordinator and the
reconciliation engine resolve them and callers never see them.
"""

from typing import Any, Optional


class TableKeeperError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error: str = "Internal Error"

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error body."""
        body: dict[str, Any] = {
            "success": False,
            "error": self.error,
            "detail": self.message,
        }
        if self.context:
            body["context"] = self.context
        return body


class ValidationError(TableKeeperError):
    """A required field is missing or malformed."""
    status_code = 400
    error = "Validation Error"


class NotFound(TableKeeperError):
    status_code = 404
    error = "Not Found"


class InvalidStateTransition(TableKeeperError):
    """The requested status edge is not in the allowed set."""
    status_code = 409
    error = "Invalid State Transition"

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot move from '{current}' to '{target}'",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


InvalidTransition = InvalidStateTransition


class BlockedDate(TableKeeperError):
    """Reservations are closed for the requested date."""
    status_code = 409
    error = "Blocked Date"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "Date is not available", reason=reason)
        self.reason = reason


class OutsideOperatingHours(TableKeeperError):
    status_code = 409
    error = "Outside Operating Hours"


class CapacityExceeded(TableKeeperError):
    status_code = 409
    error = "Capacity Exceeded"


class CollaboratorUnavailable(TableKeeperError):
    """An outside service the request depends on (menu, notifications) did not answer."""
    status_code = 503
    error = "Service Unavailable"


class StorageUnavailable(TableKeeperError):
    """Neither the primary nor the fallback store accepted the operation."""
    status_code = 503
    error = "Storage Unavailable"


class StoreUnavailable(TableKeeperError):
    """A single backend could not be reached."""
    status_code = 503
    error = "Store Unavailable"


class ReconciliationConflict(TableKeeperError):
    """Primary and fallback disagree about one record."""
    error = "Reconciliation Conflict"
