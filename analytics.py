from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

import categories

COLUMNS = ["ID", "Date", "Type", "Category", "Amount", "Description", "Source"]

DATE_FILTERS = ("all", "7d", "30d", "90d", "custom")
RELATIVE_WINDOW_DAYS = {"7d": 7, "30d": 30, "90d": 90}

GRANULARITIES = ("daily", "weekly", "monthly")


def transactions_to_df(transactions: Iterable) -> pd.DataFrame:
    """Flatten transaction records into the frame every aggregate works on."""
    rows = [
        {
            "ID": t.id,
            "Date": t.date or t.created_at,
            "Type": t.type,
            "Category": (t.category or categories.FALLBACK_CATEGORY).lower(),
            "Amount": t.amount or 0,
            "Description": t.description or "",
            "Source": t.source,
        }
        for t in transactions
    ]
    df = pd.DataFrame(rows, columns=COLUMNS)
    df["Date"] = pd.to_datetime(df["Date"])
    df["Amount"] = pd.to_numeric(df["Amount"], errors="coerce").fillna(0).astype("int64")
    return df


def _start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def _amount_between(df: pd.DataFrame, start: datetime, end: datetime, tx_type: str) -> int:
    """Sum of ``tx_type`` amounts with ``start <= Date < end``."""
    mask = (df["Type"] == tx_type) & (df["Date"] >= start) & (df["Date"] < end)
    return int(df.loc[mask, "Amount"].sum())


# --- Filtering ---

def filter_transactions(
    df: pd.DataFrame,
    date_filter: str = "all",
    start: Optional[date] = None,
    end: Optional[date] = None,
    now: Optional[datetime] = None,
) -> pd.DataFrame:
    if date_filter not in DATE_FILTERS:
        raise ValueError(f"Unknown date filter: {date_filter!r}")
    now = now or datetime.now()

    if date_filter in RELATIVE_WINDOW_DAYS:
        cutoff = now - timedelta(days=RELATIVE_WINDOW_DAYS[date_filter])
        return df[df["Date"] >= cutoff]

    if date_filter == "custom" and start is not None and end is not None:
        lower = datetime.combine(start, time.min)
        # The end day counts up to 23:59:59.
        upper = datetime.combine(end, time(23, 59, 59))
        return df[(df["Date"] >= lower) & (df["Date"] <= upper)]

    return df


# --- Totals & breakdowns ---

def summarize(df: pd.DataFrame) -> Dict[str, int]:
    income = int(df.loc[df["Type"] == "income", "Amount"].sum())
    expense = int(df.loc[df["Type"] == "expense", "Amount"].sum())
    return {
        "total_income": income,
        "total_expense": expense,
        "balance": income - expense,
        "count": int(len(df)),
    }


def category_breakdown(df: pd.DataFrame) -> List[Dict]:
    """Expense totals per category, largest first."""
    expenses = df[df["Type"] == "expense"]
    if expenses.empty:
        return []

    total = int(expenses["Amount"].sum())
    by_cat = expenses.groupby("Category")["Amount"].sum().sort_values(ascending=False, kind="stable")

    return [
        {
            "category": cat,
            "label": categories.label(cat),
            "color": categories.color(cat),
            "amount": int(amount),
            "percentage": (int(amount) / total * 100) if total > 0 else 0.0,
        }
        for cat, amount in by_cat.items()
    ]


# --- Trends ---

def _month_start(year: int, month: int) -> datetime:
    # Normalize month overflow/underflow
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime(year, month, 1)


def trend_buckets(granularity: str, now: Optional[datetime] = None) -> List[Tuple[str, datetime, datetime]]:
    """Contiguous ``(label, start, end)`` half-open ranges, oldest first.

    ``daily``: the last 7 calendar days.  ``weekly``: 4 trailing 7-day
    windows anchored on today, today-7, today-14 and today-21 (not calendar
    weeks).  ``monthly``: the last 12 calendar months.
    """
    now = now or datetime.now()
    today = _start_of_day(now)
    buckets = []

    if granularity == "daily":
        for i in range(6, -1, -1):
            start = today - timedelta(days=i)
            buckets.append((start.strftime("%a"), start, start + timedelta(days=1)))
    elif granularity == "weekly":
        for i in range(3, -1, -1):
            anchor = today - timedelta(days=7 * i)
            start = anchor - timedelta(days=6)
            buckets.append((anchor.strftime("%d %b"), start, anchor + timedelta(days=1)))
    elif granularity == "monthly":
        for i in range(11, -1, -1):
            start = _month_start(now.year, now.month - i)
            end = _month_start(start.year, start.month + 1)
            buckets.append((start.strftime("%b %Y"), start, end))
    else:
        raise ValueError(f"Unknown granularity: {granularity!r}")

    return buckets


def trend_series(
    df: pd.DataFrame,
    granularity: str = "daily",
    tx_type: str = "expense",
    now: Optional[datetime] = None,
) -> List[Dict]:
    """Per-bucket totals of one transaction type; ignores any date filter."""
    return [
        {
            "label": label,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "amount": _amount_between(df, start, end, tx_type),
        }
        for label, start, end in trend_buckets(granularity, now)
    ]


def period_comparison(df: pd.DataFrame, now: Optional[datetime] = None) -> Dict:
    """This calendar month's expense against the previous month's."""
    now = now or datetime.now()
    current_start = _month_start(now.year, now.month)
    previous_start = _month_start(now.year, now.month - 1)
    next_start = _month_start(now.year, now.month + 1)

    current = _amount_between(df, current_start, next_start, "expense")
    previous = _amount_between(df, previous_start, current_start, "expense")
    change = ((current - previous) / previous * 100) if previous > 0 else 0.0

    return {
        "current_month": current,
        "previous_month": previous,
        "change_pct": change,
    }


def recent_transactions(df: pd.DataFrame, limit: int = 5) -> List[Dict]:
    recent = df.sort_values("Date", ascending=False, kind="stable").head(limit)
    return [
        {
            "id": int(row["ID"]) if pd.notna(row["ID"]) else None,
            "date": row["Date"].isoformat(),
            "type": row["Type"],
            "category": row["Category"],
            "label": categories.label(row["Category"]),
            "amount": int(row["Amount"]),
            "description": row["Description"],
        }
        for _, row in recent.iterrows()
    ]


def build_report(
    transactions: Iterable,
    date_filter: str = "30d",
    start: Optional[date] = None,
    end: Optional[date] = None,
    granularity: str = "daily",
    trend_type: str = "expense",
    now: Optional[datetime] = None,
) -> Dict:
    """Everything the analytics screen shows, recomputed from scratch."""
    now = now or datetime.now()
    df = transactions_to_df(transactions)
    filtered = filter_transactions(df, date_filter, start, end, now)

    return {
        "date_filter": date_filter,
        "summary": summarize(filtered),
        "categories": category_breakdown(filtered),
        "trend": trend_series(df, granularity, trend_type, now),
        "comparison": period_comparison(df, now),
        "recent": recent_transactions(df),
    }
