"""Database module for the hosted store and the local fallback store."""

from database.connectivity import build_stores
from database.local_store import LocalBillingStore, LocalStore
from database.models import (
    Base,
    BillingRecordModel,
    CapexEntryModel,
    DepartmentModel,
    NotificationModel,
    SettingModel,
    VendorModel,
)
from database.session import get_engine, get_session, init_db, reset_engine, session_scope
from database.store import DatabaseBillingStore

__all__ = [
    "build_stores",
    "LocalBillingStore",
    "LocalStore",
    "Base",
    "BillingRecordModel",
    "CapexEntryModel",
    "DepartmentModel",
    "NotificationModel",
    "SettingModel",
    "VendorModel",
    "DatabaseBillingStore",
    "get_engine",
    "get_session",
    "session_scope",
    "init_db",
    "reset_engine",
]
