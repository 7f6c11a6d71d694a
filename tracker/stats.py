"""Advisory budget statistics for the dashboard."""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from pydantic import BaseModel

from state_machine.models import BillingRecord, CapexEntry

SETTING_KEYS = (
    "total_capex_budget",
    "monthly_capex_limit",
    "total_billing_budget",
    "monthly_billing_limit",
)

DEFAULT_SETTINGS = {
    "total_capex_budget": "0",
    "monthly_capex_limit": "0",
    "total_billing_budget": "1200000",
    "monthly_billing_limit": "100000",
}

ZERO = Decimal("0")


def _to_decimal(value: Optional[str]) -> Decimal:
    if value is None or value == "":
        return ZERO
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return ZERO


class BudgetSettings(BaseModel):
    """Budget limits, all advisory."""

    total_capex_budget: Decimal = ZERO
    monthly_capex_limit: Decimal = ZERO
    total_billing_budget: Decimal = ZERO
    monthly_billing_limit: Decimal = ZERO

    @classmethod
    def from_settings(cls, settings: dict[str, str]) -> "BudgetSettings":
        """Build from the key/value settings collection; missing keys are 0."""
        return cls(**{key: _to_decimal(settings.get(key)) for key in SETTING_KEYS})

    def to_settings(self) -> dict[str, str]:
        return {key: str(getattr(self, key)) for key in SETTING_KEYS}


class DashboardStats(BaseModel):
    """Budget consumption figures."""

    total_budget: Decimal = ZERO
    monthly_limit: Decimal = ZERO
    total_consumed: Decimal = ZERO
    monthly_consumed: Decimal = ZERO
    remaining_budget: Decimal = ZERO

    billing_total_budget: Decimal = ZERO
    billing_monthly_limit: Decimal = ZERO
    billing_total_consumed: Decimal = ZERO
    billing_monthly_consumed: Decimal = ZERO
    billing_remaining_budget: Decimal = ZERO


def _same_month(day: date, today: date) -> bool:
    return day.year == today.year and day.month == today.month


def _consumption(
    amounts: Iterable[tuple[date, Decimal]],
    budget: Decimal,
    limit: Decimal,
    today: date,
) -> tuple[Decimal, Decimal]:
    """Total and current-month consumption, zeroed when no budget is set."""
    amounts = list(amounts)
    total = ZERO if budget == 0 else sum((a for _, a in amounts), ZERO)
    if budget == 0 or limit == 0:
        monthly = ZERO
    else:
        monthly = sum((a for d, a in amounts if _same_month(d, today)), ZERO)
    return total, monthly


def compute_stats(
    capex_entries: list[CapexEntry],
    billing_records: list[BillingRecord],
    budgets: BudgetSettings,
    today: Optional[date] = None,
) -> DashboardStats:
    """
    Compute dashboard statistics.

    A zero total budget zeroes consumed and remaining figures so the
    dashboard does not show negative remaining budgets.
    """
    today = today or date.today()

    total, monthly = _consumption(
        ((e.entry_date, e.amount) for e in capex_entries),
        budgets.total_capex_budget,
        budgets.monthly_capex_limit,
        today,
    )
    b_total, b_monthly = _consumption(
        ((r.bill_date, r.total_amount) for r in billing_records),
        budgets.total_billing_budget,
        budgets.monthly_billing_limit,
        today,
    )

    return DashboardStats(
        total_budget=budgets.total_capex_budget,
        monthly_limit=budgets.monthly_capex_limit,
        total_consumed=total,
        monthly_consumed=monthly,
        remaining_budget=(
            ZERO if budgets.total_capex_budget == 0 else budgets.total_capex_budget - total
        ),
        billing_total_budget=budgets.total_billing_budget,
        billing_monthly_limit=budgets.monthly_billing_limit,
        billing_total_consumed=b_total,
        billing_monthly_consumed=b_monthly,
        billing_remaining_budget=(
            ZERO
            if budgets.total_billing_budget == 0
            else budgets.total_billing_budget - b_total
        ),
    )


def _limit_warning(
    label: str,
    amounts: list[tuple[date, Decimal]],
    budget: Decimal,
    limit: Decimal,
    today: date,
) -> Optional[str]:
    total = sum((a for _, a in amounts), ZERO)
    monthly = sum((a for d, a in amounts if _same_month(d, today)), ZERO)

    if budget > 0 and total > budget:
        return f"WARNING: Total {label} Budget has been exceeded!"
    if limit > 0 and monthly > limit:
        return f"WARNING: Monthly {label} Limit has been exceeded!"
    return None


def capex_budget_warning(
    entries: list[CapexEntry],
    budgets: BudgetSettings,
    today: Optional[date] = None,
) -> Optional[str]:
    """Advisory warning after adding a CAPEX entry."""
    return _limit_warning(
        "CAPEX",
        [(e.entry_date, e.amount) for e in entries],
        budgets.total_capex_budget,
        budgets.monthly_capex_limit,
        today or date.today(),
    )


def billing_budget_warning(
    records: list[BillingRecord],
    budgets: BudgetSettings,
    today: Optional[date] = None,
) -> Optional[str]:
    """Advisory warning after adding a billing record."""
    return _limit_warning(
        "Billing",
        [(r.bill_date, r.total_amount) for r in records],
        budgets.total_billing_budget,
        budgets.monthly_billing_limit,
        today or date.today(),
    )
