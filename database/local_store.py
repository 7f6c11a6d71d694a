"""
Local fallback store.

A key-value object store with fixed collections, persisted as one JSON
document on disk (or kept in memory when no path is given). Used when the
application runs offline or the hosted store is unreachable.
"""

import copy
import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from state_machine.models import (
    AppNotification,
    BillingRecord,
    CapexEntry,
    Department,
    Vendor,
)
from tracker.base import ConflictError, PersistenceError, RecordNotFoundError
from tracker.stats import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)

# Collection name -> key field
COLLECTIONS = {
    "vendors": "id",
    "departments": "id",
    "capex_entries": "id",
    "billing_records": "id",
    "settings": "key",
    "notifications": "id",
}

DEFAULT_DEPARTMENTS = ["IT", "Finance", "Operations"]


class LocalStore:
    """Key-value collections with get-all, get, add, update and delete."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize the store.

        Args:
            path: JSON file backing the store. Memory only if None.
        """
        self.path = Path(path) if path else None
        self.lock = threading.RLock()
        self._data: dict[str, dict[str, dict[str, Any]]] = {
            name: {} for name in COLLECTIONS
        }
        if self.path and self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read local store {self.path}: {e}") from e

        for name in COLLECTIONS:
            self._data[name] = dict(raw.get(name, {}))
        logger.info(f"Local store loaded from {self.path}")

    def _flush(self) -> None:
        if not self.path:
            return
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Cannot write local store {self.path}: {e}") from e

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        if name not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {name}")
        return self._data[name]

    def get_all(self, collection: str) -> list[dict[str, Any]]:
        with self.lock:
            return copy.deepcopy(list(self._collection(collection).values()))

    def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        with self.lock:
            item = self._collection(collection).get(key)
            return copy.deepcopy(item) if item is not None else None

    def _write(self, collection: str, key: str, item: Optional[dict[str, Any]]) -> None:
        """
        Set (or remove, when item is None) one key and flush to disk.

        If the flush fails the key is restored to its previous value.
        """
        items = self._collection(collection)
        previous = items.get(key)
        if item is None:
            items.pop(key, None)
        else:
            items[key] = copy.deepcopy(item)

        try:
            self._flush()
        except PersistenceError:
            if previous is None:
                items.pop(key, None)
            else:
                items[key] = previous
            raise

    def add(self, collection: str, item: dict[str, Any]) -> dict[str, Any]:
        """Insert an item; fails if the key already exists."""
        key = item[COLLECTIONS[collection]]
        with self.lock:
            if key in self._collection(collection):
                raise ValueError(f"Key '{key}' already exists in {collection}")
            self._write(collection, key, item)
        return item

    def update(self, collection: str, item: dict[str, Any]) -> dict[str, Any]:
        """Insert or replace an item by key."""
        key = item[COLLECTIONS[collection]]
        with self.lock:
            self._write(collection, key, item)
        return item

    def delete(self, collection: str, key: str) -> None:
        with self.lock:
            self._write(collection, key, None)

    def seed_defaults(self) -> None:
        """Populate departments and budget settings on first use."""
        with self.lock:
            snapshot = copy.deepcopy(self._data)
            if not self._data["departments"]:
                for name in DEFAULT_DEPARTMENTS:
                    department = Department(name=name)
                    self._data["departments"][department.id] = department.model_dump()
            if not self._data["settings"]:
                for key, value in DEFAULT_SETTINGS.items():
                    self._data["settings"][key] = {"key": key, "value": value}
            try:
                self._flush()
            except PersistenceError:
                self._data = snapshot
                raise


class LocalBillingStore:
    """BillingStore protocol implemented over a LocalStore."""

    name = "local"

    def __init__(self, local: Optional[LocalStore] = None):
        self.local = local or LocalStore()

    def ping(self) -> bool:
        return True

    def _resolve_vendor(self, record: BillingRecord) -> BillingRecord:
        if record.vendor_id:
            vendor = self.local.get("vendors", record.vendor_id)
            if vendor:
                return record.model_copy(update={"vendor": Vendor.model_validate(vendor)})
        return record

    @staticmethod
    def _dump(record: BillingRecord) -> dict[str, Any]:
        return record.model_dump(mode="json", exclude={"vendor"})

    # Billing records

    def get_record(self, record_id: str) -> Optional[BillingRecord]:
        item = self.local.get("billing_records", record_id)
        if item is None:
            return None
        return self._resolve_vendor(BillingRecord.model_validate(item))

    def list_records(self) -> list[BillingRecord]:
        records = [
            self._resolve_vendor(BillingRecord.model_validate(item))
            for item in self.local.get_all("billing_records")
        ]
        return sorted(records, key=lambda r: r.bill_date, reverse=True)

    def add_record(self, record: BillingRecord) -> BillingRecord:
        self.local.add("billing_records", self._dump(record))
        return self._resolve_vendor(record)

    def update_record(
        self,
        record_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> BillingRecord:
        """Patch a record under the store lock, bumping its version."""
        with self.local.lock:
            item = self.local.get("billing_records", record_id)
            if item is None:
                raise RecordNotFoundError(record_id)

            current = BillingRecord.model_validate(item)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(record_id, expected_version, current.version)

            data = current.model_dump()
            data.update(changes)
            data["version"] = current.version + 1
            updated = BillingRecord.model_validate(data)
            self.local.update("billing_records", self._dump(updated))

        return self._resolve_vendor(updated)

    # Vendors and departments

    def list_vendors(self) -> list[Vendor]:
        vendors = [Vendor.model_validate(v) for v in self.local.get_all("vendors")]
        return sorted(vendors, key=lambda v: v.name.lower())

    def add_vendor(self, vendor: Vendor) -> Vendor:
        self.local.add("vendors", vendor.model_dump(mode="json"))
        return vendor

    def delete_vendor(self, vendor_id: str) -> None:
        if self.local.get("vendors", vendor_id) is None:
            raise RecordNotFoundError(vendor_id, "vendors")
        self.local.delete("vendors", vendor_id)

    def list_departments(self) -> list[Department]:
        departments = [Department.model_validate(d) for d in self.local.get_all("departments")]
        return sorted(departments, key=lambda d: d.name.lower())

    def add_department(self, department: Department) -> Department:
        self.local.add("departments", department.model_dump(mode="json"))
        return department

    # CAPEX entries

    def list_capex_entries(self) -> list[CapexEntry]:
        entries = [CapexEntry.model_validate(e) for e in self.local.get_all("capex_entries")]
        return sorted(entries, key=lambda e: e.entry_date, reverse=True)

    def add_capex_entry(self, entry: CapexEntry) -> CapexEntry:
        self.local.add("capex_entries", entry.model_dump(mode="json"))
        return entry

    # Settings

    def get_settings(self) -> dict[str, str]:
        return {s["key"]: s["value"] for s in self.local.get_all("settings")}

    def put_setting(self, key: str, value: str) -> None:
        self.local.update("settings", {"key": key, "value": value})

    # Notifications

    def insert_notification(self, notification: AppNotification) -> AppNotification:
        self.local.add("notifications", notification.model_dump(mode="json"))
        return notification

    def list_notifications(
        self, since: Optional[datetime] = None, limit: int = 50
    ) -> list[AppNotification]:
        notifications = [
            AppNotification.model_validate(n) for n in self.local.get_all("notifications")
        ]
        if since is not None:
            notifications = [n for n in notifications if n.created_at > since]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications[:limit]

    def mark_notification_read(self, notification_id: str) -> None:
        with self.local.lock:
            item = self.local.get("notifications", notification_id)
            if item is None:
                raise RecordNotFoundError(notification_id, "notifications")
            item["read"] = True
            self.local.update("notifications", item)
