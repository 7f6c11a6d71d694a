"""Notification text derivation for invoice status transitions."""

from typing import Any, Optional

from state_machine.bill_status import BillStatus, _status_value
from state_machine.models import NotificationType, Role

DEFAULT_SUBJECT = "Unspecified service"
DEFAULT_VENDOR_NAME = "Unknown vendor"
REMARK_SEPARATOR = " | Remark: "

_STAGE_MESSAGES = {
    BillStatus.INVOICE_RECEIVE: "Invoice received for {subject}.",
    BillStatus.INVOICE_INWARD: "Invoice inwarded for {subject}.",
    BillStatus.ACCOUNT_VERIFICATION: "Account verification completed for {subject}.",
    BillStatus.PH_SIGNATURE: "PH Signature completed for {subject}.",
    BillStatus.PORTAL_UPDATE: "Portal update completed for {subject}.",
    BillStatus.DELAYED: "Vendor {name} reported a DELAY in generating invoice for {subject}.",
}


def build_notification_message(
    target: Any,
    role: Any,
    subject: Optional[str] = None,
    name: Optional[str] = None,
    remark: Optional[str] = None,
) -> str:
    """
    Build the human-readable message for a transition.

    Args:
        target: Status the record moved to.
        role: Role of the acting user.
        subject: Service type / description of the record.
        name: Vendor or acting user display name.
        remark: Optional remark, appended after the message.

    Returns:
        Notification message text.
    """
    target = _status_value(target)
    role = _status_value(role)
    subject = subject or DEFAULT_SUBJECT
    name = name or DEFAULT_VENDOR_NAME

    if target == BillStatus.ISSUE:
        if role == Role.SECURITY.value:
            message = f"Security reported an INWARD ISSUE for {subject}."
        else:
            message = f"Vendor {name} reported an ISSUE with {subject}."
    elif target in _STAGE_MESSAGES:
        message = _STAGE_MESSAGES[target].format(subject=subject, name=name)
    else:
        raise ValueError(f"No notification message for status '{target}'")

    if remark and remark.strip():
        message += REMARK_SEPARATOR + remark.strip()

    return message


def notification_type_for(target: Any) -> NotificationType:
    """Exception states warn, everything else is informational."""
    if BillStatus.is_exception(_status_value(target)):
        return NotificationType.WARNING
    return NotificationType.INFO
