"""Tests for the invoice status tracker."""

import threading
from datetime import date, datetime, timedelta

import pytest

from database.local_store import LocalBillingStore
from state_machine.bill_status import TransitionError
from state_machine.models import (
    Actor,
    BillingRecord,
    InvoiceStatus,
    NotificationType,
    PaymentStatus,
    Role,
    Vendor,
)
from tracker.base import (
    ConflictError,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
)
from tracker.feed import NotificationFeed
from tracker.status_tracker import BillStatusTracker, append_remark, can_view

ADMIN = Actor(role=Role.ADMIN, display_name="Asha")
STAFF = Actor(role=Role.STAFF, display_name="Ravi")
SECURITY = Actor(role=Role.SECURITY, display_name="Gate 1")


class FakeClock:
    """Clock advancing one minute per call."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(minutes=1)
        return current


class FailingNotificationStore(LocalBillingStore):
    """Local store whose notification inserts always fail."""

    def insert_notification(self, notification):
        raise PersistenceError("notifications table unavailable")


@pytest.fixture
def store():
    store = LocalBillingStore()
    store.add_vendor(Vendor(id="V-1", name="Acme Networks"))
    store.add_record(
        BillingRecord(
            id="REC-1",
            vendor_id="V-1",
            service_type="Internet Leased Line",
            bill_date=date(2024, 5, 1),
        )
    )
    store.add_record(
        BillingRecord(
            id="REC-2",
            manual_vendor_name="Bright Power",
            service_type="Electricity",
            bill_date=date(2024, 5, 2),
        )
    )
    return store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(store, clock):
    return BillStatusTracker(store=store, clock=clock)


def vendor_actor(store) -> Actor:
    return Actor(role=Role.VENDOR, display_name="Acme Networks", vendor_id="V-1")


class TestAdvance:
    """Test status transitions."""

    def test_sets_exact_status(self, tracker, store) -> None:
        result = tracker.advance("REC-1", "account_verification", actor=STAFF)

        assert result.previous_status is None
        assert result.record.invoice_status == InvoiceStatus.ACCOUNT_VERIFICATION
        assert store.get_record("REC-1").invoice_status == InvoiceStatus.ACCOUNT_VERIFICATION

    def test_idempotent_status_with_one_notification_per_call(self, tracker, store) -> None:
        """Test that repeating a transition keeps the status and notifies each time."""
        tracker.advance("REC-1", "invoice_inward", actor=STAFF)
        tracker.advance("REC-1", "invoice_inward", actor=STAFF)

        assert store.get_record("REC-1").invoice_status == InvoiceStatus.INVOICE_INWARD
        assert len(store.list_notifications()) == 2

    def test_bumps_version_and_updated_at(self, tracker, store, clock) -> None:
        before = store.get_record("REC-1")

        result = tracker.advance("REC-1", "invoice_receive", actor=STAFF)

        assert result.record.version == before.version + 1
        assert result.record.updated_at == datetime(2024, 5, 1, 9, 0, 0)

    def test_record_not_found(self, tracker, store) -> None:
        with pytest.raises(RecordNotFoundError) as exc_info:
            tracker.advance("REC-404", "invoice_receive", actor=STAFF)

        assert exc_info.value.record_id == "REC-404"
        assert store.list_notifications() == []

    def test_unknown_status_raises_transition_error(self, tracker, store) -> None:
        with pytest.raises(TransitionError):
            tracker.advance("REC-1", "archived", actor=ADMIN)

        assert store.get_record("REC-1").version == 1

    def test_strict_mode_rejects_backward_move(self, store, clock) -> None:
        tracker = BillStatusTracker(store=store, strict_transitions=True, clock=clock)
        tracker.advance("REC-1", "ph_signature", actor=STAFF)

        with pytest.raises(TransitionError):
            tracker.advance("REC-1", "invoice_receive", actor=STAFF)

        assert store.get_record("REC-1").invoice_status == InvoiceStatus.PH_SIGNATURE

    def test_result_to_dict(self, tracker) -> None:
        data = tracker.advance("REC-1", "invoice_receive", actor=STAFF).to_dict()

        assert data["record_id"] == "REC-1"
        assert data["previous_status"] is None
        assert data["current_status"] == "invoice_receive"
        assert data["notification"]["message"] == "Invoice received for Internet Leased Line."


class TestMilestones:
    """Test first-write-wins milestone timestamps."""

    def test_milestones_captured_once(self, tracker, store) -> None:
        tracker.advance("REC-1", "invoice_receive", actor=STAFF)
        first = store.get_record("REC-1").invoice_generated_at

        tracker.advance("REC-1", "invoice_inward", actor=STAFF)
        tracker.advance("REC-1", "invoice_receive", actor=STAFF)

        record = store.get_record("REC-1")
        assert first == datetime(2024, 5, 1, 9, 0, 0)
        assert record.invoice_generated_at == first
        assert record.invoice_mailed_at == datetime(2024, 5, 1, 9, 1, 0)
        assert record.bill_inwarded_at is None

    def test_account_verification_sets_bill_inwarded(self, tracker, store) -> None:
        tracker.advance("REC-1", "account_verification", actor=STAFF)

        record = store.get_record("REC-1")
        assert record.bill_inwarded_at is not None
        assert record.invoice_generated_at is None

    def test_ph_signature_keeps_inward_milestone(self, tracker, store) -> None:
        tracker.advance("REC-1", "account_verification", actor=STAFF)
        inwarded_at = store.get_record("REC-1").bill_inwarded_at

        tracker.advance("REC-1", "ph_signature", remark="all clear", actor=STAFF)

        record = store.get_record("REC-1")
        assert record.invoice_status == InvoiceStatus.PH_SIGNATURE
        assert record.remarks.endswith("all clear")
        assert record.bill_inwarded_at == inwarded_at == datetime(2024, 5, 1, 9, 0, 0)

    def test_exception_states_set_no_milestone(self, tracker, store) -> None:
        tracker.advance("REC-1", "delayed", actor=STAFF)

        record = store.get_record("REC-1")
        assert record.invoice_generated_at is None
        assert record.invoice_mailed_at is None
        assert record.bill_inwarded_at is None


class TestRemarks:
    """Test the append-only remarks log."""

    def test_append_remark_format(self) -> None:
        now = datetime(2024, 5, 1, 9, 30, 5)

        assert append_remark(None, "first", "Staff Update", now) == "[Staff Update 2024-05-01 09:30:05]: first"
        assert append_remark("old", " second ", "Vendor Update", now) == (
            "old\n\n[Vendor Update 2024-05-01 09:30:05]: second"
        )

    def test_blank_remark_leaves_log(self) -> None:
        assert append_remark("old", "  ", "Staff Update", datetime(2024, 5, 1)) == "old"
        assert append_remark(None, None, "Staff Update", datetime(2024, 5, 1)) is None

    def test_remarks_only_grow(self, tracker, store) -> None:
        tracker.advance("REC-1", "invoice_receive", remark="Invoice emailed", actor=STAFF)
        tracker.advance("REC-1", "issue", remark="Wrong GSTIN", actor=ADMIN)
        tracker.advance("REC-1", "invoice_inward", actor=STAFF)

        remarks = store.get_record("REC-1").remarks
        assert remarks.startswith("[Staff Update 2024-05-01 09:00:00]: Invoice emailed")
        assert remarks.endswith("[Admin Update 2024-05-01 09:01:00]: Wrong GSTIN")
        assert remarks.count("\n\n") == 1


class TestNotifications:
    """Test notification side effects."""

    def test_notification_created(self, tracker, store) -> None:
        result = tracker.advance("REC-1", "portal_update", actor=STAFF)

        notifications = store.list_notifications()
        assert len(notifications) == 1
        assert notifications[0].id == result.notification.id
        assert notifications[0].message == "Portal update completed for Internet Leased Line."
        assert notifications[0].type == NotificationType.INFO
        assert notifications[0].record_id == "REC-1"

    def test_vendor_delay_scenario(self, tracker, store) -> None:
        """Vendor reports a delay with a remark on its own record."""
        result = tracker.advance(
            "REC-1", "delayed", remark="Awaiting PO", actor=vendor_actor(store)
        )

        assert result.notification.message == (
            "Vendor Acme Networks reported a DELAY in generating invoice "
            "for Internet Leased Line. | Remark: Awaiting PO"
        )
        assert result.notification.type == NotificationType.WARNING
        assert "[Vendor Update 2024-05-01 09:00:00]: Awaiting PO" in result.record.remarks

    def test_security_inward_issue_scenario(self, tracker) -> None:
        """Security flags an inward issue on a manually-named vendor record."""
        result = tracker.advance("REC-2", "issue", actor=SECURITY)

        assert result.notification.message == "Security reported an INWARD ISSUE for Electricity."

    def test_falls_back_to_local_store(self, clock) -> None:
        primary = FailingNotificationStore()
        primary.add_record(BillingRecord(id="REC-9", service_type="Water", bill_date=date(2024, 5, 1)))
        fallback = LocalBillingStore()
        tracker = BillStatusTracker(store=primary, fallback_store=fallback, clock=clock)

        result = tracker.advance("REC-9", "invoice_receive", actor=STAFF)

        assert result.record.invoice_status == InvoiceStatus.INVOICE_RECEIVE
        assert result.notification is not None
        assert [n.id for n in fallback.list_notifications()] == [result.notification.id]

    def test_transition_survives_without_fallback(self, clock) -> None:
        primary = FailingNotificationStore()
        primary.add_record(BillingRecord(id="REC-9", service_type="Water", bill_date=date(2024, 5, 1)))
        tracker = BillStatusTracker(store=primary, clock=clock)

        result = tracker.advance("REC-9", "invoice_receive", actor=STAFF)

        assert result.notification is None
        assert primary.get_record("REC-9").invoice_status == InvoiceStatus.INVOICE_RECEIVE

    def test_notification_published_to_feed(self, store, clock) -> None:
        feed = NotificationFeed()
        events = []
        feed.subscribe(events.append)
        tracker = BillStatusTracker(store=store, feed=feed, clock=clock)

        tracker.advance("REC-1", "invoice_receive", actor=STAFF)

        assert len(events) == 1
        assert events[0]["type"] == "notification"
        assert events[0]["message"] == "Invoice received for Internet Leased Line."
        assert events[0]["data"]["record_id"] == "REC-1"


class TestRolePermissions:
    """Test role gating of target statuses."""

    def test_vendor_cannot_set_internal_stage(self, tracker, store) -> None:
        with pytest.raises(PermissionDeniedError):
            tracker.advance("REC-1", "ph_signature", actor=vendor_actor(store))

        assert store.get_record("REC-1").invoice_status is None

    def test_vendor_cannot_touch_other_vendor_record(self, tracker, store) -> None:
        with pytest.raises(PermissionDeniedError):
            tracker.advance("REC-2", "delayed", actor=vendor_actor(store))

    def test_vendor_matched_by_manual_name(self, tracker) -> None:
        actor = Actor(role=Role.VENDOR, display_name="bright power")

        result = tracker.advance("REC-2", "invoice_receive", actor=actor)

        assert result.record.invoice_status == InvoiceStatus.INVOICE_RECEIVE

    def test_security_limited_to_inward_and_issue(self, tracker) -> None:
        tracker.advance("REC-1", "invoice_inward", actor=SECURITY)

        with pytest.raises(PermissionDeniedError):
            tracker.advance("REC-1", "account_verification", actor=SECURITY)

    def test_gating_can_be_disabled(self, store, clock) -> None:
        tracker = BillStatusTracker(store=store, enforce_role_permissions=False, clock=clock)

        result = tracker.advance("REC-1", "portal_update", actor=SECURITY)

        assert result.record.invoice_status == InvoiceStatus.PORTAL_UPDATE

    def test_can_view(self, store) -> None:
        record = store.get_record("REC-1")

        assert can_view(record, STAFF)
        assert can_view(record, vendor_actor(store))
        assert not can_view(record, Actor(role=Role.VENDOR, display_name="Someone Else"))


class TestPaymentStatus:
    """Test payment status changes."""

    def test_set_payment_status(self, tracker, store) -> None:
        record = tracker.set_payment_status("REC-1", "PO Pending", actor=ADMIN)

        assert record.payment_status == PaymentStatus.PO_PENDING
        assert record.remarks is None
        assert store.list_notifications() == []

    def test_vendor_cannot_set_payment_status(self, tracker, store) -> None:
        with pytest.raises(PermissionDeniedError):
            tracker.set_payment_status("REC-1", PaymentStatus.PAID, actor=vendor_actor(store))

    def test_invalid_payment_status(self, tracker) -> None:
        with pytest.raises(ValueError):
            tracker.set_payment_status("REC-1", "Refunded", actor=ADMIN)


class TestConcurrency:
    """Test concurrent transitions."""

    def test_concurrent_advances_last_write_wins(self, store) -> None:
        tracker = BillStatusTracker(store=store)
        barrier = threading.Barrier(2)
        errors = []

        def worker(target: str) -> None:
            barrier.wait()
            try:
                tracker.advance("REC-1", target, actor=STAFF)
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=worker, args=("invoice_inward",)),
            threading.Thread(target=worker, args=("ph_signature",)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        record = store.get_record("REC-1")
        assert record.invoice_status in (InvoiceStatus.INVOICE_INWARD, InvoiceStatus.PH_SIGNATURE)
        assert record.version == 3
        assert len(store.list_notifications()) == 2

    def test_optimistic_concurrency_rejects_stale_write(self, store, clock) -> None:
        tracker = BillStatusTracker(store=store, optimistic_concurrency=True, clock=clock)
        stale = store.get_record("REC-1")
        store.update_record("REC-1", {"remarks": "edited elsewhere"})

        with pytest.raises(ConflictError) as exc_info:
            store.update_record("REC-1", {"invoice_status": "issue"}, expected_version=stale.version)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2

        result = tracker.advance("REC-1", "issue", actor=STAFF)
        assert result.record.version == 3
