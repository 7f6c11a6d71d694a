"""Shared errors and the storage protocol used by the tracker."""

import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from state_machine.models import (
    AppNotification,
    BillingRecord,
    CapexEntry,
    Department,
    Vendor,
)

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Base class for tracker errors."""

    code = "TRACKER_ERROR"

    def __init__(self, message: str, record_id: Optional[str] = None):
        self.record_id = record_id
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": str(self),
            "record_id": self.record_id,
        }


class RecordNotFoundError(TrackerError):
    """The record does not exist in the active store."""

    code = "RECORD_NOT_FOUND"

    def __init__(self, record_id: str, collection: str = "billing_records"):
        self.collection = collection
        super().__init__(f"Record '{record_id}' not found in {collection}", record_id)


class PermissionDeniedError(TrackerError):
    """The acting role may not perform the operation."""

    code = "PERMISSION_DENIED"


class ConflictError(TrackerError):
    """The record changed since it was read."""

    code = "VERSION_CONFLICT"

    def __init__(self, record_id: str, expected_version: int, actual_version: int):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Record '{record_id}' was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            record_id,
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["expected_version"] = self.expected_version
        result["actual_version"] = self.actual_version
        return result


class PersistenceError(TrackerError):
    """A store failed to read or write."""

    code = "PERSISTENCE_ERROR"


class DuplicateSubmissionError(TrackerError):
    """An update for the same record is already in flight."""

    code = "DUPLICATE_SUBMISSION"


class BillingStore(Protocol):
    """Protocol implemented by the hosted and the local fallback store."""

    name: str

    def ping(self) -> bool:
        """Check whether the store is reachable."""
        ...

    def get_record(self, record_id: str) -> Optional[BillingRecord]:
        """Get a billing record by id."""
        ...

    def list_records(self) -> list[BillingRecord]:
        """List billing records, newest bill date first."""
        ...

    def add_record(self, record: BillingRecord) -> BillingRecord:
        """Insert a billing record."""
        ...

    def update_record(
        self,
        record_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> BillingRecord:
        """Patch a billing record, bumping its version."""
        ...

    def list_vendors(self) -> list[Vendor]:
        ...

    def add_vendor(self, vendor: Vendor) -> Vendor:
        ...

    def delete_vendor(self, vendor_id: str) -> None:
        ...

    def list_departments(self) -> list[Department]:
        ...

    def list_capex_entries(self) -> list[CapexEntry]:
        ...

    def add_capex_entry(self, entry: CapexEntry) -> CapexEntry:
        ...

    def get_settings(self) -> dict[str, str]:
        ...

    def put_setting(self, key: str, value: str) -> None:
        ...

    def insert_notification(self, notification: AppNotification) -> AppNotification:
        """Insert a notification (insert-only)."""
        ...

    def list_notifications(
        self, since: Optional[datetime] = None, limit: int = 50
    ) -> list[AppNotification]:
        """List notifications, newest first."""
        ...

    def mark_notification_read(self, notification_id: str) -> None:
        ...
