from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import pandas as pd

import categories
from analytics import transactions_to_df

EPOCH = datetime(1970, 1, 1)

PERIOD_LABELS = {
    "weekly": "Mingguan",
    "monthly": "Bulanan",
    "none": "Tanpa Reset",
}


@dataclass
class BudgetStatus:
    category: str
    label: str
    amount: int
    period: str
    spent: int
    remaining: int
    percentage: float
    is_over: bool

    def to_dict(self):
        return asdict(self)


def period_label(period: Optional[str]) -> str:
    return PERIOD_LABELS.get(period or "", PERIOD_LABELS["monthly"])


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Start of the current budget window.

    Weeks reset on Monday 00:00 (a Sunday belongs to the week that started
    six days earlier), months on the 1st, and ``none`` never resets.
    """
    now = now or datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "weekly":
        return midnight - timedelta(days=now.weekday())
    if period == "monthly":
        return midnight.replace(day=1)
    if period == "none":
        return EPOCH
    raise ValueError(f"Unknown budget period: {period!r}")


def _spent_from_df(df: pd.DataFrame, category: str, period: str, now: datetime) -> int:
    start = period_start(period, now)
    mask = (
        (df["Type"] == "expense")
        & (df["Category"] == category.lower())
        & (df["Date"] >= start)
        & (df["Date"] <= now)
    )
    return int(df.loc[mask, "Amount"].sum())


def _status_from_df(budget, df: pd.DataFrame, now: datetime) -> BudgetStatus:
    period = budget.period or "monthly"
    amount = int(budget.amount or 0)
    spent = _spent_from_df(df, budget.category, period, now)

    pct = spent / amount * 100 if amount > 0 else 0.0
    return BudgetStatus(
        category=budget.category,
        label=categories.label(budget.category),
        amount=amount,
        period=period,
        spent=spent,
        remaining=amount - spent,
        percentage=min(max(pct, 0.0), 100.0),
        is_over=spent > amount,
    )


def compute_spent(budget, transactions: Iterable, now: Optional[datetime] = None) -> int:
    """Expense total for the budget's category inside its current window."""
    now = now or datetime.now()
    return _spent_from_df(transactions_to_df(transactions), budget.category, budget.period or "monthly", now)


def budget_status(budget, transactions: Iterable, now: Optional[datetime] = None) -> BudgetStatus:
    now = now or datetime.now()
    return _status_from_df(budget, transactions_to_df(transactions), now)


def compute_budget_status(budgets: Iterable, transactions: Iterable, now: Optional[datetime] = None) -> List[BudgetStatus]:
    budgets = list(budgets)
    if not budgets:
        return []

    now = now or datetime.now()
    df = transactions_to_df(transactions)
    return [_status_from_df(b, df, now) for b in budgets]
