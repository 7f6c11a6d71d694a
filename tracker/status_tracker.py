"""Invoice status tracker: role-gated transitions with notification side effects."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from state_machine.bill_status import BillStatus, BillStatusFSM, _status_value
from state_machine.models import (
    Actor,
    AppNotification,
    BillingRecord,
    PaymentStatus,
    Role,
    utcnow,
)
from state_machine.notifications import build_notification_message, notification_type_for
from tracker.base import (
    BillingStore,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
)
from tracker.feed import NotificationFeed

logger = logging.getLogger(__name__)


ROLE_ALLOWED_TARGETS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(BillStatus.targets()),
    Role.STAFF: frozenset(BillStatus.targets()),
    Role.VENDOR: frozenset(
        {BillStatus.INVOICE_RECEIVE, BillStatus.DELAYED, BillStatus.ISSUE}
    ),
    Role.SECURITY: frozenset({BillStatus.INVOICE_INWARD, BillStatus.ISSUE}),
}

REMARK_TAGS = {
    Role.ADMIN: "Admin Update",
    Role.STAFF: "Staff Update",
    Role.VENDOR: "Vendor Update",
    Role.SECURITY: "Security Update",
}

# Target status -> milestone field captured the first time it is reached
MILESTONE_FIELDS = {
    BillStatus.INVOICE_RECEIVE: "invoice_generated_at",
    BillStatus.INVOICE_INWARD: "invoice_mailed_at",
    BillStatus.ACCOUNT_VERIFICATION: "bill_inwarded_at",
}

REMARK_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def append_remark(
    existing: Optional[str],
    remark: Optional[str],
    tag: str,
    now: datetime,
) -> Optional[str]:
    """
    Append a tagged remark to the existing remarks log.

    Blank remarks leave the log untouched.
    """
    if not remark or not remark.strip():
        return existing

    entry = f"[{tag} {now.strftime(REMARK_TIMESTAMP_FORMAT)}]: {remark.strip()}"
    if existing:
        return f"{existing}\n\n{entry}"
    return entry


def can_view(record: BillingRecord, actor: Actor) -> bool:
    """Whether the actor's dashboard shows this record."""
    if actor.role != Role.VENDOR:
        return True
    if actor.vendor_id and record.vendor_id == actor.vendor_id:
        return True
    return bool(
        actor.display_name
        and record.manual_vendor_name
        and record.manual_vendor_name.strip().lower()
        == actor.display_name.strip().lower()
    )


def visible_records(records: list[BillingRecord], actor: Actor) -> list[BillingRecord]:
    """Filter a record set down to what the actor may see."""
    return [record for record in records if can_view(record, actor)]


@dataclass
class AdvanceResult:
    """Outcome of a status transition."""

    record: BillingRecord
    previous_status: Optional[str]
    notification: Optional[AppNotification] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record.id,
            "previous_status": self.previous_status,
            "current_status": _status_value(self.record.invoice_status),
            "notification": (
                self.notification.model_dump(mode="json") if self.notification else None
            ),
        }


class BillStatusTracker:
    """
    Owns invoice status transitions for billing records.

    Every transition:
    1. Loads the record from the active store (RecordNotFoundError if absent)
    2. Checks role permissions and, in strict mode, stage ordering
    3. Patches status, remarks, updated_at and first-write-wins milestones
    4. Creates a notification, falling back to the local store on failure
    """

    def __init__(
        self,
        store: BillingStore,
        fallback_store: Optional[BillingStore] = None,
        strict_transitions: bool = False,
        optimistic_concurrency: bool = False,
        enforce_role_permissions: bool = True,
        feed: Optional[NotificationFeed] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the tracker.

        Args:
            store: Active store holding the billing records.
            fallback_store: Local store used when notification inserts fail.
            strict_transitions: Enforce forward-only stage ordering.
            optimistic_concurrency: Reject writes on stale record versions.
            enforce_role_permissions: Restrict targets by actor role.
            feed: Optional feed that receives every created notification.
            clock: Source of the current time.
        """
        self.store = store
        self.fallback_store = fallback_store
        self.strict_transitions = strict_transitions
        self.optimistic_concurrency = optimistic_concurrency
        self.enforce_role_permissions = enforce_role_permissions
        self.feed = feed
        self._clock = clock

    def _load(self, record_id: str) -> BillingRecord:
        record = self.store.get_record(record_id)
        if record is None:
            logger.warning(f"Billing record {record_id} not found in {self.store.name} store")
            raise RecordNotFoundError(record_id)
        return record

    def check_permission(self, record: BillingRecord, target: str, actor: Actor) -> None:
        """Raise PermissionDeniedError if the actor may not set target."""
        if not self.enforce_role_permissions:
            return

        allowed = ROLE_ALLOWED_TARGETS.get(actor.role, frozenset())
        if target not in allowed:
            raise PermissionDeniedError(
                f"Role '{actor.role.value}' cannot set invoice status '{target}'",
                record.id,
            )
        if not can_view(record, actor):
            raise PermissionDeniedError(
                f"Record '{record.id}' does not belong to vendor "
                f"'{actor.display_name or actor.vendor_id}'",
                record.id,
            )

    def advance(
        self,
        record_id: str,
        target: Any,
        remark: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> AdvanceResult:
        """
        Move a billing record to a new invoice status.

        Args:
            record_id: Billing record id.
            target: Target status.
            remark: Optional free-text remark appended to the remarks log.
            actor: Acting user (defaults to staff).

        Returns:
            AdvanceResult with the persisted record and the notification.

        Raises:
            RecordNotFoundError: If the record does not exist.
            TransitionError: If the target is unknown or out of order.
            PermissionDeniedError: If the role may not set the target.
            ConflictError: If optimistic concurrency detects a stale read.
            PersistenceError: If the record update fails.
        """
        actor = actor or Actor()
        record = self._load(record_id)
        previous = _status_value(record.invoice_status)

        fsm = BillStatusFSM(
            record_id=record.id,
            initial_status=previous,
            strict=self.strict_transitions,
        )
        target = _status_value(target)
        if target in BillStatus.targets():
            self.check_permission(record, target, actor)
        fsm.advance(target)

        now = self._clock()
        changes: dict[str, Any] = {
            "invoice_status": fsm.current_status,
            "remarks": append_remark(record.remarks, remark, REMARK_TAGS[actor.role], now),
            "updated_at": now,
        }
        for status, field_name in MILESTONE_FIELDS.items():
            existing = getattr(record, field_name)
            changes[field_name] = existing or (now if target == status else None)

        updated = self.store.update_record(
            record.id,
            changes,
            expected_version=record.version if self.optimistic_concurrency else None,
        )

        message = build_notification_message(
            target,
            actor.role,
            subject=record.service_type,
            name=record.vendor_display_name or actor.display_name,
            remark=remark,
        )
        notification = self._notify(
            AppNotification(
                message=message,
                type=notification_type_for(target),
                created_at=now,
                record_id=record.id,
            )
        )

        return AdvanceResult(
            record=updated,
            previous_status=previous,
            notification=notification,
        )

    def _notify(self, notification: AppNotification) -> Optional[AppNotification]:
        """Persist a notification; best-effort, never blocks the transition."""
        try:
            saved = self.store.insert_notification(notification)
        except PersistenceError as e:
            logger.warning(
                f"Notification insert failed on {self.store.name} store: {e}"
            )
            if self.fallback_store is None or self.fallback_store is self.store:
                logger.error("No fallback store available, notification dropped")
                return None
            try:
                saved = self.fallback_store.insert_notification(notification)
            except PersistenceError:
                logger.exception("Fallback notification insert failed")
                return None
            logger.info(f"Notification {saved.id} written to {self.fallback_store.name} store")

        if self.feed:
            self.feed.publish_notification(saved)
        return saved

    def set_payment_status(
        self,
        record_id: str,
        status: Any,
        actor: Optional[Actor] = None,
    ) -> BillingRecord:
        """
        Set a record's payment status.

        No remarks, no notification. Admin and staff only.
        """
        actor = actor or Actor()
        if not actor.is_admin_or_staff:
            raise PermissionDeniedError(
                f"Role '{actor.role.value}' cannot change payment status", record_id
            )

        payment_status = PaymentStatus(_status_value(status))
        record = self._load(record_id)

        updated = self.store.update_record(
            record.id,
            {"payment_status": payment_status, "updated_at": self._clock()},
            expected_version=record.version if self.optimistic_concurrency else None,
        )
        logger.info(f"Billing record {record_id}: payment status -> {payment_status.value}")
        return updated
