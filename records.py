"""User-scoped reads and writes against the transaction and budget tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from categories import is_expense_category, normalize_category
from database import BUDGET_PERIODS, TRANSACTION_SOURCES, TRANSACTION_TYPES, Budget, Transaction
from extraction import Candidate

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ["Date", "Type", "Category", "Amount", "Description", "Source"]
EDITABLE_FIELDS = ("type", "category", "amount", "description", "date")


class BudgetValidationError(ValueError):
    """Budget form input rejected before any write."""


class NothingToExportError(LookupError):
    """The user has no transactions to export."""


@dataclass
class SaveResult:
    saved: bool
    transaction: Optional[Transaction] = None
    error: Optional[str] = None


def _as_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    return pd.to_datetime(value).to_pydatetime()


# --- Transactions ---

def add_transaction(
    db: Session,
    user_id: str,
    *,
    type: str,
    category: Optional[str],
    amount: int,
    description: str = "",
    date=None,
    source: str = "manual",
) -> Transaction:
    if type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type: {type!r}")
    if source not in TRANSACTION_SOURCES:
        raise ValueError(f"Unknown transaction source: {source!r}")

    created_at = datetime.now()
    txn = Transaction(
        user_id=user_id,
        type=type,
        category=normalize_category(category),
        amount=int(amount),
        description=description or "",
        date=_as_datetime(date) or created_at,
        source=source,
        created_at=created_at,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def save_candidate(db: Session, user_id: str, candidate: Candidate, source: str) -> SaveResult:
    """Persist an extraction candidate; failures are reported, not raised."""
    try:
        txn = add_transaction(
            db,
            user_id,
            type=candidate.type,
            category=candidate.category,
            amount=candidate.amount,
            description=candidate.description,
            date=candidate.date,
            source=source,
        )
    except (SQLAlchemyError, ValueError) as exc:
        db.rollback()
        logger.exception("Auto-save of extracted transaction failed for user %s", user_id)
        return SaveResult(saved=False, error=str(exc))
    return SaveResult(saved=True, transaction=txn)


def get_transaction(db: Session, user_id: str, txn_id: int) -> Optional[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.id == txn_id, Transaction.user_id == user_id)
        .first()
    )


def update_transaction(db: Session, user_id: str, txn_id: int, fields: Dict[str, Any]) -> Optional[Transaction]:
    txn = get_transaction(db, user_id, txn_id)
    if txn is None:
        return None

    for key, value in fields.items():
        if key not in EDITABLE_FIELDS or value is None:
            continue
        if key == "type" and value not in TRANSACTION_TYPES:
            raise ValueError(f"Unknown transaction type: {value!r}")
        if key == "category":
            value = normalize_category(value)
        elif key == "amount":
            value = int(value)
        elif key == "date":
            value = _as_datetime(value)
        setattr(txn, key, value)

    db.commit()
    db.refresh(txn)
    return txn


def delete_transaction(db: Session, user_id: str, txn_id: int) -> bool:
    txn = get_transaction(db, user_id, txn_id)
    if txn is None:
        return False
    db.delete(txn)
    db.commit()
    return True


def list_transactions(
    db: Session,
    user_id: str,
    type: Optional[str] = None,
    category: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
    newest_first: bool = True,
) -> List[Transaction]:
    query = db.query(Transaction).filter(Transaction.user_id == user_id)
    if type:
        query = query.filter(Transaction.type == type)
    if category:
        query = query.filter(Transaction.category == category.strip().lower())
    if start is not None:
        query = query.filter(Transaction.date >= start)
    if end is not None:
        query = query.filter(Transaction.date <= end)

    if newest_first:
        query = query.order_by(Transaction.date.desc(), Transaction.id.desc())
    else:
        query = query.order_by(Transaction.date.asc(), Transaction.id.asc())
    if limit:
        query = query.limit(limit)
    return query.all()


def delete_all_transactions(db: Session, user_id: str) -> int:
    count = db.query(Transaction).filter(Transaction.user_id == user_id).delete(synchronize_session=False)
    db.commit()
    return count


def export_transactions_csv(db: Session, user_id: str) -> str:
    txns = list_transactions(db, user_id)
    if not txns:
        raise NothingToExportError("Tidak ada data untuk diexport")

    df = pd.DataFrame(
        [
            {
                "Date": t.date.date().isoformat() if t.date else "",
                "Type": t.type,
                "Category": t.category,
                "Amount": t.amount,
                "Description": t.description or "",
                "Source": t.source,
            }
            for t in txns
        ],
        columns=EXPORT_COLUMNS,
    )
    return df.to_csv(index=False)


# --- Budgets ---

def list_budgets(db: Session, user_id: str) -> List[Budget]:
    return (
        db.query(Budget)
        .filter(Budget.user_id == user_id)
        .order_by(Budget.category)
        .all()
    )


def validate_budget_input(category: Optional[str], amount) -> tuple[str, int]:
    key = (category or "").strip().lower()
    if not key:
        raise BudgetValidationError("Category is required")
    if not is_expense_category(key):
        raise BudgetValidationError(f"Invalid category: {category!r}")
    if amount is None or isinstance(amount, bool):
        raise BudgetValidationError("Amount is required")
    try:
        value = int(round(float(amount)))
    except (TypeError, ValueError, OverflowError):
        raise BudgetValidationError(f"Invalid amount: {amount!r}")
    if value <= 0:
        raise BudgetValidationError("Amount must be greater than zero")
    return key, value


def upsert_budget(db: Session, user_id: str, category: Optional[str], amount, period: Optional[str] = "monthly") -> Budget:
    key, value = validate_budget_input(category, amount)
    period = period if period in BUDGET_PERIODS else "monthly"

    budget = (
        db.query(Budget)
        .filter(Budget.user_id == user_id, Budget.category == key)
        .first()
    )
    if not budget:
        budget = Budget(user_id=user_id, category=key, amount=value, period=period)
        db.add(budget)
    else:
        budget.amount = value
        budget.period = period
        budget.updated_at = datetime.now()
    db.commit()
    db.refresh(budget)
    return budget


def delete_budget(db: Session, user_id: str, category: str) -> bool:
    count = (
        db.query(Budget)
        .filter(Budget.user_id == user_id, Budget.category == (category or "").strip().lower())
        .delete(synchronize_session=False)
    )
    db.commit()
    return count > 0
