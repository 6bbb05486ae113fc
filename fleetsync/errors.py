"""Exception hierarchy for FleetSync."""

from typing import Any, Optional


class FleetSyncError(Exception):
    """Base exception for all FleetSync errors."""


class ValidationError(FleetSyncError):
    """Malformed client input (bad ID, bad timestamp, missing field)."""


class NotFoundError(FleetSyncError):
    """The addressed entity does not exist."""


class VersionConflictError(FleetSyncError):
    """
    An optimistic write declared a version that is no longer current.

    Carries the current server-side entity so the caller can reconcile
    and retry with its version.
    """

    def __init__(self, message: str, current: Any):
        self.current = current
        super().__init__(message)


class UpstreamUnavailableError(FleetSyncError):
    """The external telemetry source could not be fetched or decoded."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StorageError(FleetSyncError):
    """A store operation failed."""
