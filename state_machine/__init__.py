"""State machine module for the invoice status workflow."""

from state_machine.bill_status import (
    STATUS_STEPS,
    BillStatus,
    BillStatusFSM,
    TransitionError,
    progress_steps,
    stage_index,
)
from state_machine.models import (
    Actor,
    AppNotification,
    BillingRecord,
    CapexEntry,
    Department,
    InvoiceStatus,
    NotificationType,
    PaymentStatus,
    Role,
    Vendor,
)
from state_machine.notifications import build_notification_message

__all__ = [
    "STATUS_STEPS",
    "BillStatus",
    "BillStatusFSM",
    "TransitionError",
    "progress_steps",
    "stage_index",
    "Actor",
    "AppNotification",
    "BillingRecord",
    "CapexEntry",
    "Department",
    "InvoiceStatus",
    "NotificationType",
    "PaymentStatus",
    "Role",
    "Vendor",
    "build_notification_message",
]
