"""
Application state container for a dashboard session.

State changes only through actions:
- refresh: full re-fetch of the actor's visible records, notifications, stats
- advance: invoice status transition followed by a refresh
- create_record: insert a billing record followed by a refresh
- set_payment_status: payment status change followed by a refresh
- mark_notification_read: flag a notification as read followed by a refresh
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from state_machine.bill_status import TransitionError
from state_machine.models import (
    Actor,
    AppNotification,
    BillingRecord,
    utcnow,
)
from tracker.base import DuplicateSubmissionError, PermissionDeniedError, TrackerError
from tracker.stats import (
    BudgetSettings,
    DashboardStats,
    billing_budget_warning,
    compute_stats,
)
from tracker.status_tracker import AdvanceResult, BillStatusTracker, visible_records

logger = logging.getLogger(__name__)


class DashboardState(BaseModel):
    """Snapshot of what one actor's dashboard shows."""

    actor: Actor
    records: list[BillingRecord] = Field(default_factory=list)
    notifications: list[AppNotification] = Field(default_factory=list)
    stats: DashboardStats = Field(default_factory=DashboardStats)
    updating_ids: frozenset[str] = frozenset()
    last_error: Optional[str] = None
    last_warning: Optional[str] = None
    loaded_at: Optional[datetime] = None

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def is_updating(self, record_id: str) -> bool:
        return record_id in self.updating_ids


StateListener = Callable[[DashboardState], None]


class InFlightRegistry:
    """Record ids with an update in progress, shareable between dashboards."""

    def __init__(self) -> None:
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __contains__(self, record_id: object) -> bool:
        with self._lock:
            return record_id in self._ids

    def acquire(self, record_id: str) -> None:
        """Mark a record as in flight; DuplicateSubmissionError if it already is."""
        with self._lock:
            if record_id in self._ids:
                raise DuplicateSubmissionError(
                    f"An update for record '{record_id}' is already in progress",
                    record_id,
                )
            self._ids.add(record_id)

    def release(self, record_id: str) -> None:
        with self._lock:
            self._ids.discard(record_id)


class DashboardStore:
    """Explicit state container driven by the status tracker."""

    def __init__(
        self,
        tracker: BillStatusTracker,
        actor: Actor,
        notification_limit: int = 20,
        in_flight: Optional[InFlightRegistry] = None,
    ):
        """
        Initialize the container.

        Args:
            tracker: Status tracker performing the writes.
            actor: User whose view this container holds.
            notification_limit: Number of notifications loaded on refresh.
            in_flight: Registry shared with other containers; private if None.
        """
        self.tracker = tracker
        self.notification_limit = notification_limit
        self.in_flight = in_flight if in_flight is not None else InFlightRegistry()
        self._state = DashboardState(actor=actor)
        self._lock = threading.RLock()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> DashboardState:
        with self._lock:
            return self._state

    @property
    def actor(self) -> Actor:
        return self._state.actor

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called with every new state."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: Any) -> DashboardState:
        with self._lock:
            self._state = self._state.model_copy(update=changes)
            state = self._state
            listeners = list(self._listeners)
        for listener in listeners:
            listener(state)
        return state

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def refresh(self) -> DashboardState:
        """Reload everything the actor sees from the active store."""
        store = self.tracker.store
        records = visible_records(store.list_records(), self.actor)
        notifications = store.list_notifications(limit=self.notification_limit)
        budgets = BudgetSettings.from_settings(store.get_settings())
        stats = compute_stats(store.list_capex_entries(), records, budgets)

        logger.debug(
            f"Refreshed dashboard for {self.actor.role.value}: "
            f"{len(records)} records, {len(notifications)} notifications"
        )
        return self._set(
            records=records,
            notifications=notifications,
            stats=stats,
            loaded_at=utcnow(),
        )

    def _begin(self, record_id: str) -> None:
        with self._lock:
            self.in_flight.acquire(record_id)
            self._set(updating_ids=self._state.updating_ids | {record_id})

    def _finish(self, record_id: str) -> None:
        with self._lock:
            self.in_flight.release(record_id)
            self._set(updating_ids=self._state.updating_ids - {record_id})

    def _reload_after_write(self) -> None:
        """Refresh after a persisted write; a failed reload is recorded, not raised."""
        try:
            self.refresh()
        except TrackerError as e:
            logger.warning(f"Reload after update failed: {e}")
            self._set(last_error=f"Reload failed: {e}")

    def advance(
        self,
        record_id: str,
        target: Any,
        remark: Optional[str] = None,
    ) -> AdvanceResult:
        """
        Advance a record's invoice status, then reload.

        On failure the error is recorded on the state, the reload is
        skipped and the error is re-raised. If only the reload fails, the
        persisted result is still returned.
        """
        self._begin(record_id)
        try:
            result = self.tracker.advance(record_id, target, remark=remark, actor=self.actor)
        except (TrackerError, TransitionError) as e:
            self._set(last_error=str(e))
            raise
        finally:
            self._finish(record_id)

        self._set(last_error=None)
        self._reload_after_write()
        return result

    def set_payment_status(self, record_id: str, status: Any) -> BillingRecord:
        """Change payment status, then reload."""
        self._begin(record_id)
        try:
            record = self.tracker.set_payment_status(record_id, status, actor=self.actor)
        except TrackerError as e:
            self._set(last_error=str(e))
            raise
        finally:
            self._finish(record_id)

        self._set(last_error=None)
        self._reload_after_write()
        return record

    def create_record(self, record: BillingRecord) -> BillingRecord:
        """Add a billing record and evaluate the advisory budget limits."""
        if not self.actor.is_admin_or_staff:
            raise PermissionDeniedError(
                f"Role '{self.actor.role.value}' cannot create billing records"
            )

        store = self.tracker.store
        created = store.add_record(record)
        logger.info(f"Billing record {created.id} created in {store.name} store")

        warning = billing_budget_warning(
            store.list_records(),
            BudgetSettings.from_settings(store.get_settings()),
        )
        if warning:
            logger.warning(warning)

        self._set(last_error=None, last_warning=warning)
        self.refresh()
        return created

    def mark_notification_read(self, notification_id: str) -> None:
        self.tracker.store.mark_notification_read(notification_id)
        self.refresh()
