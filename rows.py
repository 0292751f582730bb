"""Row data access for the digest and simulation engines.

Callers ask for rows of a table scoped by user and date range and get plain
dicts back. The ``normalize_*`` adapters turn those dicts into canonical
records, so every legacy column alias is resolved in exactly one place.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from database import SessionFactory, session_scope
from models import (
    Account,
    Budget,
    Debt,
    Goal,
    SubscriptionCharge,
    Transaction,
    WeeklyBudget,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED_LABEL = "Tanpa kategori"
SUBSCRIPTION_LABEL = "Langganan"
DEBT_LABEL = "Hutang"

# First non-zero wins.
ACCOUNT_BALANCE_FIELDS = (
    "current_balance",
    "balance",
    "opening_balance",
    "initial_balance",
)
CASH_LIKE_ACCOUNT_TYPES = {"cash", "bank", "ewallet"}


@dataclass(frozen=True)
class RowFilters:
    user_id: int
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category_id: Optional[int] = None
    status: Sequence[str] = field(default_factory=tuple)
    account_id: Optional[int] = None


class RowQuery(Protocol):
    async def query_rows(
        self, table: str, filters: RowFilters
    ) -> list[dict[str, Any]]: ...


def to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def to_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class TransactionRecord:
    id: Any
    type: str
    amount: Decimal
    date: date
    category_id: Optional[int]
    category_name: str


@dataclass(frozen=True)
class BudgetRecord:
    id: Any
    category_id: Optional[int]
    name: str
    planned: Decimal
    period_month: Optional[date]


@dataclass(frozen=True)
class AccountRecord:
    id: Any
    type: Optional[str]
    balance: Decimal
    archived: bool
    active: bool

    @property
    def counts_toward_balance(self) -> bool:
        if self.archived or not self.active:
            return False
        return self.type is None or self.type in CASH_LIKE_ACCOUNT_TYPES


@dataclass(frozen=True)
class UpcomingRecord:
    id: Any
    kind: str
    name: str
    due_date: date
    amount: Decimal
    currency: str
    status: str


def account_balance(row: dict[str, Any]) -> Decimal:
    for field_name in ACCOUNT_BALANCE_FIELDS:
        candidate = to_decimal(row.get(field_name))
        if candidate != 0:
            return candidate
    return Decimal("0")


def normalize_account(row: dict[str, Any]) -> AccountRecord:
    raw_type = _clean_text(row.get("type"))
    return AccountRecord(
        id=row.get("id"),
        type=raw_type.lower() if raw_type else None,
        balance=account_balance(row),
        archived=bool(row.get("is_archived") or False),
        active=row.get("is_active") is not False,
    )


def normalize_transaction(row: dict[str, Any]) -> Optional[TransactionRecord]:
    txn_date = to_date(row.get("date"))
    if txn_date is None or row.get("deleted_at"):
        return None
    return TransactionRecord(
        id=row.get("id"),
        type=str(row.get("type") or "").lower(),
        amount=to_decimal(row.get("amount")),
        date=txn_date,
        category_id=row.get("category_id"),
        category_name=_clean_text(row.get("category_name")) or UNCATEGORIZED_LABEL,
    )


def normalize_budget(row: dict[str, Any]) -> BudgetRecord:
    planned = row.get("planned")
    if planned is None:
        planned = row.get("amount_planned")
    return BudgetRecord(
        id=row.get("id"),
        category_id=row.get("category_id"),
        name=_clean_text(row.get("name"))
        or _clean_text(row.get("category_name"))
        or UNCATEGORIZED_LABEL,
        planned=to_decimal(planned),
        period_month=to_date(row.get("period_month")),
    )


def normalize_upcoming(
    row: dict[str, Any], kind: str, default_currency: str
) -> Optional[UpcomingRecord]:
    due = to_date(row.get("due_date"))
    if due is None:
        return None
    default_label = SUBSCRIPTION_LABEL if kind == "subscription" else DEBT_LABEL
    name = (
        _clean_text(row.get("name"))
        or _clean_text(row.get("title"))
        or default_label
    )
    return UpcomingRecord(
        id=row.get("id"),
        kind=kind,
        name=name,
        due_date=due,
        amount=to_decimal(row.get("amount")),
        currency=_clean_text(row.get("currency")) or default_currency,
        status=str(row.get("status") or "").lower(),
    )


@dataclass(frozen=True)
class _TableSpec:
    model: type
    date_column: Optional[str]
    shape: Callable[[Any], dict[str, Any]]
    order_by: Optional[str] = None
    eager: tuple[str, ...] = ()


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _shape_transaction(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "type": _enum_value(txn.type),
        "amount": txn.amount,
        "date": txn.date,
        "category_id": txn.category_id,
        "category_name": txn.category.name if txn.category else None,
        "account_id": txn.account_id,
        "deleted_at": txn.deleted_at,
    }


def _shape_budget(budget: Budget) -> dict[str, Any]:
    return {
        "id": budget.id,
        "category_id": budget.category_id,
        "name": budget.name,
        "category_name": budget.category.name if budget.category else None,
        "planned": budget.planned,
        "period_month": budget.period_month,
        "carryover_enabled": budget.carryover_enabled,
    }


def _shape_weekly_budget(row: WeeklyBudget) -> dict[str, Any]:
    return {
        "id": row.id,
        "category_id": row.category_id,
        "week_start": row.week_start,
        "planned": row.planned,
        "carryover_enabled": row.carryover_enabled,
    }


def _shape_account(account: Account) -> dict[str, Any]:
    return {
        "id": account.id,
        "type": _enum_value(account.type),
        "current_balance": account.current_balance,
        "balance": account.balance,
        "opening_balance": account.opening_balance,
        "initial_balance": account.initial_balance,
        "is_archived": account.is_archived,
        "is_active": account.is_active,
    }


def _shape_charge(charge: SubscriptionCharge) -> dict[str, Any]:
    return {
        "id": charge.id,
        "name": charge.subscription.name if charge.subscription else None,
        "due_date": charge.due_date,
        "amount": charge.amount,
        "currency": charge.currency,
        "status": _enum_value(charge.status),
    }


def _shape_debt(debt: Debt) -> dict[str, Any]:
    return {
        "id": debt.id,
        "title": debt.title,
        "type": debt.type,
        "due_date": debt.due_date,
        "amount": debt.amount,
        "status": _enum_value(debt.status),
    }


def _shape_goal(goal: Goal) -> dict[str, Any]:
    return {
        "id": goal.id,
        "title": goal.title,
        "target_amount": goal.target_amount,
        "saved_amount": goal.saved_amount,
        "due_date": goal.due_date,
        "status": goal.status,
    }


TABLES: dict[str, _TableSpec] = {
    "transactions": _TableSpec(
        Transaction, "date", _shape_transaction, "date", ("category",)
    ),
    "budgets": _TableSpec(Budget, "period_month", _shape_budget, None, ("category",)),
    "weekly_budgets": _TableSpec(
        WeeklyBudget, "week_start", _shape_weekly_budget, "week_start"
    ),
    "accounts": _TableSpec(Account, None, _shape_account),
    "subscription_charges": _TableSpec(
        SubscriptionCharge, "due_date", _shape_charge, "due_date", ("subscription",)
    ),
    "debts": _TableSpec(Debt, "due_date", _shape_debt, "due_date"),
    "goals": _TableSpec(Goal, "due_date", _shape_goal, "due_date"),
}


class SqlRowQuery:
    """Row queries against the relational store.

    Each call runs on a worker thread with its own session, so independent
    queries awaited together really do overlap.
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None) -> None:
        self.session_factory = session_factory

    async def query_rows(
        self, table: str, filters: RowFilters
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.query_rows_sync, table, filters)

    def query_rows_sync(self, table: str, filters: RowFilters) -> list[dict[str, Any]]:
        table_def = TABLES.get(table)
        if table_def is None:
            raise ValueError(f"Unknown table: {table}")
        model = table_def.model
        stmt = select(model).where(model.user_id == filters.user_id)
        for rel in table_def.eager:
            stmt = stmt.options(joinedload(getattr(model, rel)))
        if table_def.date_column:
            column = getattr(model, table_def.date_column)
            if filters.date_from is not None:
                stmt = stmt.where(column >= filters.date_from)
            if filters.date_to is not None:
                stmt = stmt.where(column <= filters.date_to)
        if filters.category_id is not None and hasattr(model, "category_id"):
            stmt = stmt.where(model.category_id == filters.category_id)
        if filters.status and hasattr(model, "status"):
            stmt = stmt.where(model.status.in_(list(filters.status)))
        if filters.account_id is not None and hasattr(model, "account_id"):
            stmt = stmt.where(model.account_id == filters.account_id)
        if model is Transaction:
            stmt = stmt.where(Transaction.deleted_at.is_(None))
        if table_def.order_by:
            stmt = stmt.order_by(getattr(model, table_def.order_by).asc(), model.id.asc())

        with session_scope(self.session_factory) as session:
            rows = session.scalars(stmt).unique().all()
            shaped = [table_def.shape(row) for row in rows]
        logger.debug(f"query_rows: table={table} user={filters.user_id} rows={len(shaped)}")
        return shaped
