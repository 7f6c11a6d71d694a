"""Database-backed (hosted) billing store implementation."""

import logging
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Generator, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from database.models import (
    BillingRecordModel,
    CapexEntryModel,
    DepartmentModel,
    NotificationModel,
    SettingModel,
    VendorModel,
)
from database.session import check_connection, session_scope
from state_machine.models import (
    AppNotification,
    BillingRecord,
    CapexEntry,
    Department,
    Vendor,
)
from tracker.base import ConflictError, PersistenceError, RecordNotFoundError

logger = logging.getLogger(__name__)

# Columns a patch update may touch
UPDATABLE_FIELDS = frozenset(
    {
        "invoice_status",
        "remarks",
        "updated_at",
        "invoice_generated_at",
        "invoice_mailed_at",
        "bill_inwarded_at",
        "payment_status",
    }
)


def _plain(value: Any) -> Any:
    """Unwrap enums to the string stored in the column."""
    if isinstance(value, Enum):
        return value.value
    return value


@contextmanager
def _translate_errors(operation: str) -> Generator[None, None, None]:
    """Re-raise SQLAlchemy failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception(f"Hosted store {operation} failed")
        raise PersistenceError(f"Hosted store {operation} failed: {e}") from e


def _vendor_from_model(model: VendorModel) -> Vendor:
    return Vendor(
        id=model.id,
        name=model.name,
        service_type=model.service_type,
        contact_person=model.contact_person,
        email=model.email,
        phone=model.phone,
        address=model.address,
    )


def _record_from_model(model: BillingRecordModel) -> BillingRecord:
    return BillingRecord(
        id=model.id,
        vendor_id=model.vendor_id,
        manual_vendor_name=model.manual_vendor_name,
        vendor=_vendor_from_model(model.vendor) if model.vendor else None,
        invoice_number=model.invoice_number,
        service_type=model.service_type,
        bill_date=model.bill_date,
        service_start_date=model.service_start_date,
        amount=model.amount,
        gst_rate=model.gst_rate,
        cgst_rate=model.cgst_rate,
        sgst_rate=model.sgst_rate,
        gst_amount=model.gst_amount,
        gst_type=model.gst_type,
        total_amount=model.total_amount,
        bill_url=model.bill_url,
        po_url=model.po_url,
        invoice_status=model.invoice_status,
        remarks=model.remarks,
        payment_status=model.payment_status,
        invoice_generated_at=model.invoice_generated_at,
        invoice_mailed_at=model.invoice_mailed_at,
        bill_inwarded_at=model.bill_inwarded_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
        version=model.version,
    )


def _notification_from_model(model: NotificationModel) -> AppNotification:
    return AppNotification(
        id=model.id,
        message=model.message,
        type=model.type,
        created_at=model.created_at,
        read=model.read,
        record_id=model.record_id,
    )


class DatabaseBillingStore:
    """
    Hosted billing store using SQLAlchemy.

    Implements the BillingStore protocol. Every operation runs in its own
    session; database failures surface as PersistenceError.
    """

    name = "hosted"

    def ping(self) -> bool:
        return check_connection()

    # Billing records

    def get_record(self, record_id: str) -> Optional[BillingRecord]:
        """
        Get a billing record with its vendor.

        Returns:
            BillingRecord or None if not found.
        """
        with _translate_errors("read"), session_scope() as session:
            model = session.get(BillingRecordModel, record_id)
            if not model:
                return None
            return _record_from_model(model)

    def list_records(self) -> list[BillingRecord]:
        """List billing records, newest bill date first."""
        with _translate_errors("read"), session_scope() as session:
            models = (
                session.query(BillingRecordModel)
                .order_by(BillingRecordModel.bill_date.desc())
                .all()
            )
            return [_record_from_model(model) for model in models]

    def add_record(self, record: BillingRecord) -> BillingRecord:
        """Insert a new billing record."""
        values = {
            key: _plain(value)
            for key, value in record.model_dump(exclude={"vendor"}).items()
        }
        with _translate_errors("insert"), session_scope() as session:
            model = BillingRecordModel(**values)
            session.add(model)
            session.flush()
            session.refresh(model)
            logger.debug(f"Inserted billing record {model.id}")
            return _record_from_model(model)

    def update_record(
        self,
        record_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> BillingRecord:
        """
        Patch a billing record.

        Args:
            record_id: The record identifier.
            changes: Column values to set.
            expected_version: If given, the update only applies when the
                stored version still matches.

        Returns:
            The updated record.

        Raises:
            RecordNotFoundError: If the record does not exist.
            ConflictError: If expected_version is stale.
            PersistenceError: If the database write fails.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be patched: {sorted(unknown)}")

        values = {key: _plain(value) for key, value in changes.items()}

        with _translate_errors("update"), session_scope() as session:
            stmt = update(BillingRecordModel).where(BillingRecordModel.id == record_id)
            if expected_version is not None:
                stmt = stmt.where(BillingRecordModel.version == expected_version)
            stmt = stmt.values(**values, version=BillingRecordModel.version + 1)

            result = session.execute(stmt.execution_options(synchronize_session=False))

            if result.rowcount == 0:
                current = session.get(BillingRecordModel, record_id)
                if current is None:
                    raise RecordNotFoundError(record_id)
                raise ConflictError(record_id, expected_version or 0, current.version)

            session.expire_all()
            model = session.get(BillingRecordModel, record_id)
            logger.debug(f"Updated billing record {record_id} to version {model.version}")
            return _record_from_model(model)

    # Vendors and departments

    def list_vendors(self) -> list[Vendor]:
        with _translate_errors("read"), session_scope() as session:
            models = session.query(VendorModel).order_by(VendorModel.name).all()
            return [_vendor_from_model(model) for model in models]

    def add_vendor(self, vendor: Vendor) -> Vendor:
        with _translate_errors("insert"), session_scope() as session:
            session.add(VendorModel(**vendor.model_dump()))
        return vendor

    def delete_vendor(self, vendor_id: str) -> None:
        with _translate_errors("delete"), session_scope() as session:
            model = session.get(VendorModel, vendor_id)
            if model is None:
                raise RecordNotFoundError(vendor_id, "vendors")
            session.delete(model)

    def list_departments(self) -> list[Department]:
        with _translate_errors("read"), session_scope() as session:
            models = session.query(DepartmentModel).order_by(DepartmentModel.name).all()
            return [Department(id=model.id, name=model.name) for model in models]

    def add_department(self, department: Department) -> Department:
        with _translate_errors("insert"), session_scope() as session:
            session.add(DepartmentModel(id=department.id, name=department.name))
        return department

    # CAPEX entries

    def list_capex_entries(self) -> list[CapexEntry]:
        with _translate_errors("read"), session_scope() as session:
            models = (
                session.query(CapexEntryModel)
                .order_by(CapexEntryModel.entry_date.desc())
                .all()
            )
            return [
                CapexEntry(
                    id=model.id,
                    vendor_id=model.vendor_id,
                    department_id=model.department_id,
                    category=model.category,
                    description=model.description,
                    amount=model.amount,
                    entry_date=model.entry_date,
                    invoice_url=model.invoice_url,
                    remarks=model.remarks,
                )
                for model in models
            ]

    def add_capex_entry(self, entry: CapexEntry) -> CapexEntry:
        with _translate_errors("insert"), session_scope() as session:
            session.add(CapexEntryModel(**entry.model_dump()))
        return entry

    # Settings

    def get_settings(self) -> dict[str, str]:
        with _translate_errors("read"), session_scope() as session:
            return {s.key: s.value for s in session.query(SettingModel).all()}

    def put_setting(self, key: str, value: str) -> None:
        """Upsert a setting."""
        with _translate_errors("upsert"), session_scope() as session:
            session.merge(SettingModel(key=key, value=value))

    # Notifications

    def insert_notification(self, notification: AppNotification) -> AppNotification:
        with _translate_errors("notification insert"), session_scope() as session:
            session.add(
                NotificationModel(
                    id=notification.id,
                    message=notification.message,
                    type=_plain(notification.type),
                    read=notification.read,
                    record_id=notification.record_id,
                    created_at=notification.created_at,
                )
            )
        return notification

    def list_notifications(
        self, since: Optional[datetime] = None, limit: int = 50
    ) -> list[AppNotification]:
        """List notifications newest first, optionally only those after since."""
        with _translate_errors("read"), session_scope() as session:
            query = session.query(NotificationModel)
            if since is not None:
                query = query.filter(NotificationModel.created_at > since)
            query = query.order_by(NotificationModel.created_at.desc()).limit(limit)
            return [_notification_from_model(model) for model in query.all()]

    def mark_notification_read(self, notification_id: str) -> None:
        with _translate_errors("update"), session_scope() as session:
            model = session.get(NotificationModel, notification_id)
            if model is None:
                raise RecordNotFoundError(notification_id, "notifications")
            model.read = True
