#!/usr/bin/env python3
"""
Console dashboard for the bill tracker.

Uses the SAME DashboardStore and BillStatusTracker as the API server.

Usage:
    bill-tracker-console

Commands:
    /records                         - List visible records with progress
    /show ID                         - Show a record
    /advance ID STATUS [remark...]   - Advance the invoice status
    /pay ID Paid|Pending|PO-Pending  - Set the payment status
    /create SERVICE TOTAL [VENDOR]   - Create a billing record
    /notifications                   - Show recent notifications
    /stats                           - Show budget statistics
    /role ROLE [NAME]                - Act as another role
    /help                            - Show help
    exit                             - Exit
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

from database.connectivity import build_stores
from server.config import Settings, get_settings
from state_machine.bill_status import (
    STATUS_STEPS,
    BillStatus,
    TransitionError,
    progress_percent,
    progress_steps,
)
from state_machine.models import Actor, BillingRecord, Role
from tracker.app_state import DashboardStore
from tracker.base import TrackerError
from tracker.feed import NotificationFeed
from tracker.status_tracker import BillStatusTracker


def print_header() -> None:
    """Print console header."""
    print("\n" + "=" * 60)
    print("Bill Tracker Console")
    print("=" * 60)
    print("""
Commands:
  /records                        - List visible records
  /show ID                        - Show a record
  /advance ID STATUS [remark...]  - Advance the invoice status
  /pay ID Paid|Pending|PO-Pending - Set the payment status
  /create SERVICE TOTAL [VENDOR]  - Create a billing record
  /notifications                  - Show recent notifications
  /stats                          - Show budget statistics
  /role ROLE [NAME]               - Act as admin, staff, vendor or security
  /help                           - Show this help
  exit                            - Exit

Statuses:
  """ + ", ".join(BillStatus.targets()))
    print("=" * 60 + "\n")


def format_progress(status: Optional[str]) -> str:
    """Render the stage progress as a single line."""
    marks = []
    for step in progress_steps(status):
        if step["completed"]:
            mark = "x"
        elif step["next"]:
            mark = ">"
        else:
            mark = " "
        marks.append(f"[{mark}] {step['label']}")
    return " - ".join(marks)


def format_record(record: BillingRecord) -> str:
    """Render a record as a boxed table."""
    status = record.invoice_status.value if record.invoice_status else "not generated"
    vendor = record.vendor_display_name or "-"
    lines = [
        f"+{'-' * 58}+",
        f"| Record: {record.id:<49}|",
        f"+{'-' * 58}+",
        f"| Service: {(record.service_type or '-')[:48]:<48}|",
        f"| Vendor: {vendor[:49]:<49}|",
        f"| Total: {str(record.total_amount):<50}|",
        f"| Invoice Status: {status:<41}|",
        f"| Payment Status: {record.payment_status.value:<41}|",
        f"| Progress: {progress_percent(record.invoice_status):>5.1f}%{' ' * 41}|",
        f"+{'-' * 58}+",
        format_progress(record.invoice_status),
    ]
    if record.remarks:
        lines.append("Remarks:")
        lines.extend(f"   {line}" for line in record.remarks.splitlines())
    return "\n".join(lines)


class ConsoleSession:
    """Holds the tracker and the dashboard of the current role."""

    def __init__(self, tracker: BillStatusTracker, actor: Actor):
        self.tracker = tracker
        self.dashboard = DashboardStore(tracker, actor)

    def switch_role(self, role: Role, name: Optional[str] = None) -> None:
        vendor_id = None
        if role == Role.VENDOR and name:
            for vendor in self.tracker.store.list_vendors():
                if vendor.name.lower() == name.lower():
                    vendor_id = vendor.id
                    break
        self.dashboard = DashboardStore(
            self.tracker, Actor(role=role, display_name=name, vendor_id=vendor_id)
        )

    def resolve_record_id(self, prefix: str) -> Optional[str]:
        """Match a full id or a unique id prefix among visible records."""
        matches = [
            r.id for r in self.dashboard.refresh().records if r.id.startswith(prefix)
        ]
        if len(matches) == 1:
            return matches[0]
        return None


def handle_command(cmd: str, session: ConsoleSession) -> bool:
    """
    Handle console commands.

    Args:
        cmd: The command string.
        session: Active console session.

    Returns:
        True if should continue, False if should exit.
    """
    parts = cmd.strip().split()
    if not parts:
        return True
    command = parts[0].lower()
    dashboard = session.dashboard

    if command == "exit":
        print("\nConsole closed. Goodbye!")
        return False

    elif command == "/help":
        print_header()

    elif command == "/records":
        records = dashboard.refresh().records
        if not records:
            print("No records visible.")
        for record in records:
            status = record.invoice_status.value if record.invoice_status else "-"
            print(f"   - {record.id[:8]}  {(record.service_type or '-'):<30} {status}")
            print(f"     {format_progress(record.invoice_status)}")

    elif command == "/show":
        if len(parts) < 2:
            print("Usage: /show ID")
        else:
            record_id = session.resolve_record_id(parts[1])
            if not record_id:
                print(f"Record {parts[1]} not found")
            else:
                print(format_record(dashboard.tracker.store.get_record(record_id)))

    elif command == "/advance":
        if len(parts) < 3:
            print("Usage: /advance ID STATUS [remark...]")
            print("   Statuses: " + ", ".join(step["id"] for step in STATUS_STEPS) + ", delayed, issue")
        else:
            record_id = session.resolve_record_id(parts[1])
            remark = " ".join(parts[3:]) or None
            if not record_id:
                print(f"Record {parts[1]} not found")
            else:
                try:
                    result = dashboard.advance(record_id, parts[2].lower(), remark=remark)
                except (TrackerError, TransitionError) as e:
                    print(f"Error: {e}")
                else:
                    print(f"Transition: {result.previous_status or 'not generated'} -> {parts[2].lower()}")
                    if result.notification:
                        print(f"Notification: {result.notification.message}")
                    print(format_record(result.record))

    elif command == "/pay":
        if len(parts) < 3:
            print("Usage: /pay ID Paid|Pending|PO-Pending")
        else:
            record_id = session.resolve_record_id(parts[1])
            status = parts[2].replace("-", " ")
            if not record_id:
                print(f"Record {parts[1]} not found")
            else:
                try:
                    record = dashboard.set_payment_status(record_id, status)
                except (TrackerError, ValueError) as e:
                    print(f"Error: {e}")
                else:
                    print(f"Payment status: {record.payment_status.value}")

    elif command == "/create":
        if len(parts) < 3:
            print("Usage: /create SERVICE TOTAL [VENDOR]")
        else:
            try:
                total = Decimal(parts[2])
            except InvalidOperation:
                print(f"Invalid amount: {parts[2]}")
                return True
            record = BillingRecord(
                service_type=parts[1],
                total_amount=total,
                amount=total,
                manual_vendor_name=" ".join(parts[3:]) or None,
                bill_date=date.today(),
            )
            try:
                created = dashboard.create_record(record)
            except TrackerError as e:
                print(f"Error: {e}")
            else:
                print(f"Created record: {created.id}")
                if dashboard.state.last_warning:
                    print(dashboard.state.last_warning)

    elif command == "/notifications":
        notifications = dashboard.refresh().notifications
        if not notifications:
            print("No notifications")
        for note in notifications[:5]:
            flag = " " if note.read else "*"
            print(f" {flag} [{note.type.value}] {note.message}")

    elif command == "/stats":
        stats = dashboard.refresh().stats
        print(f"\nCAPEX consumed: {stats.total_consumed} / {stats.total_budget}")
        print(f"CAPEX this month: {stats.monthly_consumed} / {stats.monthly_limit}")
        print(f"Billing consumed: {stats.billing_total_consumed} / {stats.billing_total_budget}")
        print(f"Billing this month: {stats.billing_monthly_consumed} / {stats.billing_monthly_limit}")
        print(f"Billing remaining: {stats.billing_remaining_budget}\n")

    elif command == "/role":
        if len(parts) < 2:
            print("Usage: /role admin|staff|vendor|security [NAME]")
        else:
            try:
                role = Role(parts[1].lower())
            except ValueError:
                print(f"Unknown role: {parts[1]}")
                return True
            session.switch_role(role, " ".join(parts[2:]) or None)
            print(f"Acting as: {role.value} {session.dashboard.actor.display_name or ''}")

    elif command.startswith("/"):
        print(f"Unknown command: {command}")
        print("   Type /help for available commands")

    else:
        print("Commands start with '/'. Type /help for available commands")

    return True


def build_session(settings: Settings) -> ConsoleSession:
    """Wire stores, tracker and dashboard from settings."""
    store, fallback = build_stores(
        settings.database_url,
        offline_mode=settings.offline_mode,
        local_store_path=settings.local_store_path or None,
    )
    tracker = BillStatusTracker(
        store=store,
        fallback_store=fallback,
        strict_transitions=settings.strict_transitions,
        optimistic_concurrency=settings.optimistic_concurrency,
        enforce_role_permissions=settings.enforce_role_permissions,
        feed=NotificationFeed(),
    )
    return ConsoleSession(tracker, Actor(role=Role.ADMIN, display_name="Console"))


def main() -> None:
    """Run the console dashboard."""
    load_dotenv()
    print_header()

    print("Initializing...")
    settings = get_settings()
    session = build_session(settings)
    print(f"Active store: {session.tracker.store.name}")
    session.tracker.feed.subscribe(lambda event: print(f"\n[notification] {event['message']}"))
    print("Ready! Acting as admin. Use /role to switch.\n")

    while True:
        try:
            user_input = input("tracker> ").strip()
            if not user_input:
                continue
            if not handle_command(user_input, session):
                break
        except KeyboardInterrupt:
            print("\n\nInterrupted. Goodbye!")
            break
        except Exception as e:
            print(f"\nError: {e}\n")


if __name__ == "__main__":
    main()
