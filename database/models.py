"""
SQLAlchemy models for the hosted store.

Tables:
- vendors: Vendor master data
- departments: Departments charged for CAPEX
- capex_entries: Capital expenditure entries
- billing_records: Recurring bills with invoice/payment status
- settings: Key/value budget settings
- notifications: Notifications created by status transitions
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from state_machine.models import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class VendorModel(Base):
    """Vendor table."""

    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(255), nullable=False, index=True)
    service_type = Column(String(255), nullable=True)
    contact_person = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)

    billing_records = relationship("BillingRecordModel", back_populates="vendor")

    def __repr__(self) -> str:
        return f"<Vendor {self.name}>"


class DepartmentModel(Base):
    """Department table."""

    __tablename__ = "departments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(255), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Department {self.name}>"


class CapexEntryModel(Base):
    """Capital expenditure table."""

    __tablename__ = "capex_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True)
    department_id = Column(
        String(36), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True
    )
    category = Column(String(100), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    entry_date = Column(Date, nullable=False, index=True)
    invoice_url = Column(String(500), nullable=True)
    remarks = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CapexEntry {self.id} amount={self.amount}>"


class BillingRecordModel(Base):
    """Billing record table."""

    __tablename__ = "billing_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True)
    manual_vendor_name = Column(String(255), nullable=True)

    # Bill details
    invoice_number = Column(String(100), nullable=True)
    service_type = Column(String(255), nullable=True)
    bill_date = Column(Date, nullable=False)
    service_start_date = Column(Date, nullable=True)

    # Financials
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    gst_rate = Column(Numeric(5, 2), nullable=True)
    cgst_rate = Column(Numeric(5, 2), nullable=True)
    sgst_rate = Column(Numeric(5, 2), nullable=True)
    gst_amount = Column(Numeric(14, 2), nullable=True)
    gst_type = Column(String(20), nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)

    # Attachments
    bill_url = Column(String(500), nullable=True)
    po_url = Column(String(500), nullable=True)

    # Workflow
    invoice_status = Column(String(50), nullable=True, index=True)
    remarks = Column(Text, nullable=True)
    payment_status = Column(String(20), nullable=False, default="Pending")

    # Milestones
    invoice_generated_at = Column(DateTime, nullable=True)
    invoice_mailed_at = Column(DateTime, nullable=True)
    bill_inwarded_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    vendor = relationship("VendorModel", back_populates="billing_records", lazy="joined")

    __table_args__ = (
        Index("ix_billing_vendor_status", "vendor_id", "invoice_status"),
        Index("ix_billing_bill_date", "bill_date"),
    )

    def __repr__(self) -> str:
        return f"<BillingRecord {self.id} status={self.invoice_status}>"


class SettingModel(Base):
    """Key/value settings table."""

    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Setting {self.key}={self.value}>"


class NotificationModel(Base):
    """Notifications table (insert-only, read flag aside)."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default="info")
    read = Column(Boolean, nullable=False, default=False)
    record_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Notification {self.type}: {self.message[:30]}>"
