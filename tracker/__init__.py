"""Invoice status tracking service and dashboard state."""

from tracker.app_state import DashboardState, DashboardStore, InFlightRegistry
from tracker.base import (
    BillingStore,
    ConflictError,
    DuplicateSubmissionError,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
    TrackerError,
)
from tracker.feed import NotificationFeed
from tracker.status_tracker import AdvanceResult, BillStatusTracker

__all__ = [
    "DashboardState",
    "DashboardStore",
    "InFlightRegistry",
    "BillingStore",
    "ConflictError",
    "DuplicateSubmissionError",
    "PermissionDeniedError",
    "PersistenceError",
    "RecordNotFoundError",
    "TrackerError",
    "NotificationFeed",
    "AdvanceResult",
    "BillStatusTracker",
]
