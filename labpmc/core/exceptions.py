"""
Maintenance error types.

Every error says whether the failed operation left the database untouched
(``outcome="not_applied"``) or whether the commit itself failed and the
caller cannot tell if it was applied (``outcome="unknown"``).
"""
from typing import Any, Dict, Optional


OUTCOME_NOT_APPLIED = "not_applied"
OUTCOME_UNKNOWN = "unknown"


class MaintenanceError(Exception):
    """Base exception for the maintenance subsystem."""
    status_code = 400
    retryable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        outcome: str = OUTCOME_NOT_APPLIED,
    ):
        self.message = message
        self.details = details or {}
        self.outcome = outcome
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "type": type(self).__name__,
            "outcome": self.outcome,
            "retryable": self.retryable,
            "details": self.details,
        }


class MaintenanceReportNotFoundError(MaintenanceError):
    """No maintenance report exists for the (workstation, quarter) key."""
    status_code = 404


class MaintenanceValidationError(MaintenanceError):
    """Request rejected before any mutation."""
    status_code = 422


class ReferenceDataMissingError(MaintenanceError):
    """A referenced inventory or reference-data row does not exist."""
    status_code = 404


class AssetNotFoundError(ReferenceDataMissingError):
    """Asset referenced by an asset action does not exist."""

    def __init__(self, asset_id, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Inventory asset {asset_id} not found",
            details={"asset_id": str(asset_id), **(details or {})},
        )


class StorageConflictError(MaintenanceError):
    """Concurrent write could not be serialized; nothing was committed."""
    status_code = 409
    retryable = True


class AmbiguousOutcomeError(MaintenanceError):
    """The commit failed mid-flight; the write may or may not be durable."""
    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details, outcome=OUTCOME_UNKNOWN)


class StorageError(MaintenanceError):
    """The database rejected the write; the transaction was rolled back."""
    status_code = 500
