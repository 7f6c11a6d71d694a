"""Core domain models for the bill tracker."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Generate an opaque record identifier."""
    return str(uuid4())


class InvoiceStatus(str, Enum):
    """Invoice statuses tracked on a billing record."""

    INVOICE_RECEIVE = "invoice_receive"
    INVOICE_INWARD = "invoice_inward"
    ACCOUNT_VERIFICATION = "account_verification"
    PH_SIGNATURE = "ph_signature"
    PORTAL_UPDATE = "portal_update"
    DELAYED = "delayed"
    ISSUE = "issue"


class PaymentStatus(str, Enum):
    """Payment statuses, independent of the invoice status."""

    PAID = "Paid"
    PENDING = "Pending"
    PO_PENDING = "PO Pending"


class GstType(str, Enum):
    """GST treatment of a bill."""

    CGST_SGST = "CGST + SGST"
    IGST = "IGST"
    EXEMPTED = "Exempted"


class NotificationType(str, Enum):
    """Notification severity tags."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"


class Role(str, Enum):
    """User roles."""

    ADMIN = "admin"
    STAFF = "staff"
    VENDOR = "vendor"
    SECURITY = "security"


class Actor(BaseModel):
    """The user performing an operation."""

    role: Role = Role.STAFF
    display_name: Optional[str] = None
    vendor_id: Optional[str] = None

    class Config:
        frozen = True

    @property
    def is_admin_or_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.STAFF)


class Vendor(BaseModel):
    """Vendor entity."""

    id: str = Field(default_factory=new_id)
    name: str
    service_type: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class Department(BaseModel):
    """Department entity."""

    id: str = Field(default_factory=new_id)
    name: str


class CapexEntry(BaseModel):
    """Capital expenditure entry."""

    id: str = Field(default_factory=new_id)
    vendor_id: Optional[str] = None
    department_id: Optional[str] = None
    category: str = ""
    description: str = ""
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    entry_date: date
    invoice_url: Optional[str] = None
    remarks: Optional[str] = None


class BillingRecord(BaseModel):
    """Recurring billing record, the entity the status tracker operates on."""

    id: str = Field(default_factory=new_id)
    vendor_id: Optional[str] = None
    manual_vendor_name: Optional[str] = None
    vendor: Optional[Vendor] = None
    invoice_number: Optional[str] = None
    service_type: Optional[str] = None
    bill_date: date
    service_start_date: Optional[date] = None

    # Financials
    amount: Decimal = Field(default=Decimal("0"), ge=0, description="Base amount")
    gst_rate: Optional[Decimal] = None
    cgst_rate: Optional[Decimal] = None
    sgst_rate: Optional[Decimal] = None
    gst_amount: Optional[Decimal] = None
    gst_type: Optional[GstType] = None
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)

    # Attachments
    bill_url: Optional[str] = None
    po_url: Optional[str] = None

    # Workflow
    invoice_status: Optional[InvoiceStatus] = None
    remarks: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING

    # Milestones (first-write-wins)
    invoice_generated_at: Optional[datetime] = None
    invoice_mailed_at: Optional[datetime] = None
    bill_inwarded_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=1, ge=1)

    @property
    def vendor_display_name(self) -> Optional[str]:
        """Structured vendor name, falling back to the manual vendor name."""
        if self.vendor and self.vendor.name:
            return self.vendor.name
        return self.manual_vendor_name or None


class AppNotification(BaseModel):
    """Notification created as a side effect of a status transition."""

    id: str = Field(default_factory=new_id)
    message: str
    type: NotificationType = NotificationType.INFO
    created_at: datetime = Field(default_factory=utcnow)
    read: bool = False
    record_id: Optional[str] = None


class Setting(BaseModel):
    """Key/value application setting."""

    key: str
    value: str
