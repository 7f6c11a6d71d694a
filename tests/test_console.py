"""Tests for the console dashboard commands."""

from datetime import date

import pytest

from console.dashboard import ConsoleSession, format_progress, handle_command
from database.local_store import LocalBillingStore, LocalStore
from state_machine.models import Actor, BillingRecord, InvoiceStatus, PaymentStatus, Role, Vendor
from tracker.status_tracker import BillStatusTracker


@pytest.fixture
def session():
    local = LocalStore()
    local.seed_defaults()
    store = LocalBillingStore(local)
    store.add_vendor(Vendor(id="V-1", name="Acme"))
    store.add_record(
        BillingRecord(
            id="abc12345-0000",
            vendor_id="V-1",
            service_type="Internet",
            bill_date=date(2024, 5, 1),
        )
    )
    return ConsoleSession(BillStatusTracker(store=store), Actor(role=Role.ADMIN))


class TestConsoleCommands:
    def test_exit(self, session):
        assert handle_command("exit", session) is False

    def test_records(self, session, capsys):
        assert handle_command("/records", session)

        assert "abc12345" in capsys.readouterr().out

    def test_advance_by_prefix(self, session, capsys):
        handle_command("/advance abc1 invoice_inward received at gate", session)

        out = capsys.readouterr().out
        record = session.tracker.store.get_record("abc12345-0000")
        assert record.invoice_status == InvoiceStatus.INVOICE_INWARD
        assert "received at gate" in record.remarks
        assert "Notification: Invoice inwarded for Internet." in out

    def test_advance_error_printed(self, session, capsys):
        handle_command("/advance abc1 archived", session)

        assert "Error:" in capsys.readouterr().out

    def test_pay(self, session):
        handle_command("/pay abc1 PO-Pending", session)

        record = session.tracker.store.get_record("abc12345-0000")
        assert record.payment_status == PaymentStatus.PO_PENDING

    def test_role_switch_filters_records(self, session, capsys):
        handle_command("/role vendor Someone", session)
        capsys.readouterr()

        handle_command("/records", session)

        assert session.dashboard.actor.role == Role.VENDOR
        assert "No records visible." in capsys.readouterr().out

    def test_role_switch_resolves_vendor(self, session):
        handle_command("/role vendor acme", session)

        assert session.dashboard.actor.vendor_id == "V-1"

    def test_create_record(self, session, capsys):
        handle_command("/create Rent 5000 Landlord", session)

        assert "Created record:" in capsys.readouterr().out
        assert len(session.tracker.store.list_records()) == 2

    def test_unknown_command(self, session, capsys):
        handle_command("/frobnicate", session)

        assert "Unknown command" in capsys.readouterr().out


class TestFormatProgress:
    def test_marks(self):
        line = format_progress("invoice_inward")

        assert line.startswith("[x] Invoice Received - [x] Invoice Inward - [>] Accounts Verification")
