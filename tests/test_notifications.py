"""Tests for notification message derivation."""

import pytest

from state_machine.models import InvoiceStatus, NotificationType, Role
from state_machine.notifications import (
    DEFAULT_SUBJECT,
    DEFAULT_VENDOR_NAME,
    build_notification_message,
    notification_type_for,
)


class TestBuildNotificationMessage:
    """Test message text per target status."""

    @pytest.mark.parametrize(
        "target,expected",
        [
            ("invoice_receive", "Invoice received for Internet."),
            ("invoice_inward", "Invoice inwarded for Internet."),
            ("account_verification", "Account verification completed for Internet."),
            ("ph_signature", "PH Signature completed for Internet."),
            ("portal_update", "Portal update completed for Internet."),
        ],
    )
    def test_stage_messages(self, target: str, expected: str) -> None:
        message = build_notification_message(target, Role.STAFF, subject="Internet", name="Acme")
        assert message == expected

    def test_delayed_names_vendor(self) -> None:
        message = build_notification_message(
            InvoiceStatus.DELAYED, Role.VENDOR, subject="Internet", name="Acme"
        )
        assert message == "Vendor Acme reported a DELAY in generating invoice for Internet."

    def test_issue_from_vendor(self) -> None:
        message = build_notification_message("issue", Role.VENDOR, subject="Internet", name="Acme")
        assert message == "Vendor Acme reported an ISSUE with Internet."

    def test_issue_from_security_is_inward_issue(self) -> None:
        """Test that security reports an inward issue rather than a vendor issue."""
        message = build_notification_message("issue", Role.SECURITY, subject="Internet", name="Gate")
        assert message == "Security reported an INWARD ISSUE for Internet."

    def test_remark_suffix(self) -> None:
        message = build_notification_message(
            "invoice_inward", Role.SECURITY, subject="Internet", remark="  received at gate "
        )
        assert message == "Invoice inwarded for Internet. | Remark: received at gate"

    def test_blank_remark_ignored(self) -> None:
        message = build_notification_message("invoice_inward", Role.STAFF, subject="Internet", remark="   ")
        assert message == "Invoice inwarded for Internet."

    def test_placeholders_for_missing_values(self) -> None:
        message = build_notification_message("delayed", Role.VENDOR)
        assert DEFAULT_SUBJECT in message
        assert DEFAULT_VENDOR_NAME in message

    def test_unknown_target_raises(self) -> None:
        with pytest.raises(ValueError, match="No notification message"):
            build_notification_message("paid", Role.STAFF)


class TestNotificationType:
    """Test severity tagging."""

    def test_exception_states_warn(self) -> None:
        assert notification_type_for("delayed") == NotificationType.WARNING
        assert notification_type_for(InvoiceStatus.ISSUE) == NotificationType.WARNING

    def test_stages_are_info(self) -> None:
        assert notification_type_for("portal_update") == NotificationType.INFO
