"""Tests for budget statistics and advisory warnings."""

from datetime import date
from decimal import Decimal

from state_machine.models import BillingRecord, CapexEntry
from tracker.stats import (
    DEFAULT_SETTINGS,
    BudgetSettings,
    billing_budget_warning,
    capex_budget_warning,
    compute_stats,
)

TODAY = date(2024, 5, 15)


def record(amount: str, bill_date: date = TODAY) -> BillingRecord:
    return BillingRecord(bill_date=bill_date, total_amount=Decimal(amount))


def entry(amount: str, entry_date: date = TODAY) -> CapexEntry:
    return CapexEntry(entry_date=entry_date, amount=Decimal(amount))


class TestBudgetSettings:
    def test_from_settings_defaults_missing_to_zero(self):
        budgets = BudgetSettings.from_settings({"total_billing_budget": "1000", "monthly_capex_limit": "bad"})

        assert budgets.total_billing_budget == Decimal("1000")
        assert budgets.monthly_capex_limit == Decimal("0")
        assert budgets.total_capex_budget == Decimal("0")

    def test_default_settings_round_trip(self):
        budgets = BudgetSettings.from_settings(DEFAULT_SETTINGS)

        assert budgets.total_billing_budget == Decimal("1200000")
        assert budgets.monthly_billing_limit == Decimal("100000")
        assert BudgetSettings.from_settings(budgets.to_settings()) == budgets


class TestComputeStats:
    def test_consumption_and_remaining(self):
        budgets = BudgetSettings(
            total_capex_budget=Decimal("1000"),
            monthly_capex_limit=Decimal("500"),
            total_billing_budget=Decimal("800"),
            monthly_billing_limit=Decimal("300"),
        )
        stats = compute_stats(
            [entry("100"), entry("200", date(2024, 4, 1))],
            [record("50"), record("70", date(2023, 5, 1))],
            budgets,
            today=TODAY,
        )

        assert stats.total_consumed == Decimal("300")
        assert stats.monthly_consumed == Decimal("100")
        assert stats.remaining_budget == Decimal("700")
        assert stats.billing_total_consumed == Decimal("120")
        assert stats.billing_monthly_consumed == Decimal("50")
        assert stats.billing_remaining_budget == Decimal("680")

    def test_zero_budget_zeroes_figures(self):
        stats = compute_stats([entry("100")], [record("50")], BudgetSettings(), today=TODAY)

        assert stats.total_consumed == 0
        assert stats.monthly_consumed == 0
        assert stats.remaining_budget == 0
        assert stats.billing_remaining_budget == 0


class TestBudgetWarnings:
    def test_total_exceeded(self):
        budgets = BudgetSettings(total_billing_budget=Decimal("100"))

        warning = billing_budget_warning([record("60"), record("50")], budgets, today=TODAY)

        assert warning == "WARNING: Total Billing Budget has been exceeded!"

    def test_monthly_exceeded(self):
        budgets = BudgetSettings(total_capex_budget=Decimal("1000"), monthly_capex_limit=Decimal("100"))

        warning = capex_budget_warning([entry("60"), entry("50")], budgets, today=TODAY)

        assert warning == "WARNING: Monthly CAPEX Limit has been exceeded!"

    def test_within_limits(self):
        budgets = BudgetSettings(total_billing_budget=Decimal("1000"), monthly_billing_limit=Decimal("100"))

        assert billing_budget_warning([record("60")], budgets, today=TODAY) is None
        assert capex_budget_warning([entry("60")], BudgetSettings(), today=TODAY) is None
