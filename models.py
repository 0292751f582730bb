from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

MONEY = Numeric(16, 2, asdecimal=True)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class CategoryType(str, Enum):
    income = "income"
    expense = "expense"


class AccountType(str, Enum):
    cash = "cash"
    bank = "bank"
    ewallet = "ewallet"
    other = "other"


class ChargeStatus(str, Enum):
    due = "due"
    paid = "paid"
    skipped = "skipped"
    canceled = "canceled"
    overdue = "overdue"


class DebtStatus(str, Enum):
    ongoing = "ongoing"
    paid = "paid"
    overdue = "overdue"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(9))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[Optional[AccountType]] = mapped_column(SAEnum(AccountType))
    # Several balance columns survive from older schemas; see rows.ACCOUNT_BALANCE_FIELDS.
    current_balance: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    balance: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    opening_balance: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    initial_balance: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_accounts_user", "user_id"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    name: Mapped[Optional[str]] = mapped_column(String(120))
    planned: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    period_month: Mapped[date] = mapped_column(Date, nullable=False)
    carryover_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "period_month", "category_id", name="uq_budget_user_month_cat"
        ),
        Index("ix_budget_user_month", "user_id", "period_month"),
        CheckConstraint("planned >= 0", name="ck_budget_planned_positive"),
    )


class WeeklyBudget(Base, TimestampMixin):
    __tablename__ = "weekly_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    planned: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    carryover_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_id", "week_start", name="uq_weekly_budget_scope"
        ),
        CheckConstraint("planned >= 0", name="ck_weekly_budget_planned_positive"),
    )


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(3))

    charges: Mapped[list["SubscriptionCharge"]] = relationship(
        "SubscriptionCharge", back_populates="subscription"
    )


class SubscriptionCharge(Base, TimestampMixin):
    __tablename__ = "subscription_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("subscriptions.id"), nullable=False
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    status: Mapped[ChargeStatus] = mapped_column(
        SAEnum(ChargeStatus), nullable=False, default=ChargeStatus.due
    )

    subscription: Mapped["Subscription"] = relationship(
        "Subscription", back_populates="charges"
    )

    __table_args__ = (Index("ix_charges_user_due", "user_id", "due_date"),)


class Debt(Base, TimestampMixin):
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[Optional[str]] = mapped_column(String(120))
    type: Mapped[Optional[str]] = mapped_column(String(20))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[DebtStatus] = mapped_column(
        SAEnum(DebtStatus), nullable=False, default=DebtStatus.ongoing
    )

    __table_args__ = (Index("ix_debts_user_due", "user_id", "due_date"),)


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    saved_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")


class SalarySimulation(Base, TimestampMixin):
    __tablename__ = "salary_simulations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[Optional[str]] = mapped_column(String(160))
    salary_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    period_month: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    items: Mapped[list["SalarySimulationItem"]] = relationship(
        "SalarySimulationItem",
        back_populates="simulation",
        cascade="all, delete-orphan",
        order_by="SalarySimulationItem.id",
    )

    __table_args__ = (
        Index("ix_salary_sim_user_period", "user_id", "period_month"),
        CheckConstraint("salary_amount > 0", name="ck_salary_sim_salary_positive"),
    )


class SalarySimulationItem(Base, TimestampMixin):
    __tablename__ = "salary_simulation_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    simulation_id: Mapped[int] = mapped_column(
        ForeignKey("salary_simulations.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    allocation_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    allocation_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    simulation: Mapped["SalarySimulation"] = relationship(
        "SalarySimulation", back_populates="items"
    )
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("allocation_amount >= 0", name="ck_salary_item_amount"),
    )


class BudgetScenario(Base, TimestampMixin):
    __tablename__ = "budget_sim_scenarios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    period_month: Mapped[date] = mapped_column(Date, nullable=False)
    include_weekly: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    items: Mapped[list["BudgetScenarioItem"]] = relationship(
        "BudgetScenarioItem",
        back_populates="scenario",
        cascade="all, delete-orphan",
        order_by="BudgetScenarioItem.id",
    )

    __table_args__ = (
        Index("ix_budget_sim_user_period", "user_id", "period_month"),
    )


class BudgetScenarioItem(Base, TimestampMixin):
    __tablename__ = "budget_sim_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scenario_id: Mapped[int] = mapped_column(
        ForeignKey("budget_sim_scenarios.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    delta_monthly: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    delta_weekly: Mapped[Optional[dict]] = mapped_column(JSON)
    locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    scenario: Mapped["BudgetScenario"] = relationship(
        "BudgetScenario", back_populates="items"
    )

    __table_args__ = (
        UniqueConstraint("scenario_id", "category_id", name="uq_budget_sim_item"),
    )


class KeyValueEntry(Base):
    __tablename__ = "kv_store"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
