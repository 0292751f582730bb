"""initial schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(16, 2)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        sa.Column("color", sa.String(length=9)),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("cash", "bank", "ewallet", "other", name="accounttype")
        ),
        sa.Column("current_balance", MONEY),
        sa.Column("balance", MONEY),
        sa.Column("opening_balance", MONEY),
        sa.Column("initial_balance", MONEY),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user", "accounts", ["user_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "type",
            sa.Enum("income", "expense", "transfer", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "date"]
    )
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("name", sa.String(length=120)),
        sa.Column("planned", MONEY, nullable=False, server_default="0"),
        sa.Column("period_month", sa.Date(), nullable=False),
        sa.Column(
            "carryover_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "period_month", "category_id", name="uq_budget_user_month_cat"
        ),
        sa.CheckConstraint("planned >= 0", name="ck_budget_planned_positive"),
    )
    op.create_index("ix_budget_user_month", "budgets", ["user_id", "period_month"])

    op.create_table(
        "weekly_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("planned", MONEY, nullable=False, server_default="0"),
        sa.Column(
            "carryover_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category_id", "week_start", name="uq_weekly_budget_scope"
        ),
        sa.CheckConstraint("planned >= 0", name="ck_weekly_budget_planned_positive"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=120)),
        sa.Column("amount", MONEY, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3)),
        *_timestamps(),
    )

    op.create_table(
        "subscription_charges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("subscriptions.id"),
            nullable=False,
        ),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("amount", MONEY, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3)),
        sa.Column(
            "status",
            sa.Enum(
                "due", "paid", "skipped", "canceled", "overdue", name="chargestatus"
            ),
            nullable=False,
            server_default="due",
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_charges_user_due", "subscription_charges", ["user_id", "due_date"]
    )

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("title", sa.String(length=120)),
        sa.Column("type", sa.String(length=20)),
        sa.Column("amount", MONEY, nullable=False, server_default="0"),
        sa.Column("due_date", sa.Date()),
        sa.Column(
            "status",
            sa.Enum("ongoing", "paid", "overdue", name="debtstatus"),
            nullable=False,
            server_default="ongoing",
        ),
        *_timestamps(),
    )
    op.create_index("ix_debts_user_due", "debts", ["user_id", "due_date"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("target_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("saved_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("due_date", sa.Date()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        *_timestamps(),
    )

    op.create_table(
        "salary_simulations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("title", sa.String(length=160)),
        sa.Column("salary_amount", MONEY, nullable=False),
        sa.Column("period_month", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("salary_amount > 0", name="ck_salary_sim_salary_positive"),
    )
    op.create_index(
        "ix_salary_sim_user_period", "salary_simulations", ["user_id", "period_month"]
    )

    op.create_table(
        "salary_simulation_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "simulation_id",
            sa.Integer(),
            sa.ForeignKey("salary_simulations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("allocation_amount", MONEY, nullable=False),
        sa.Column("allocation_percent", sa.Numeric(7, 4)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("allocation_amount >= 0", name="ck_salary_item_amount"),
    )

    op.create_table(
        "budget_sim_scenarios",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("period_month", sa.Date(), nullable=False),
        sa.Column(
            "include_weekly", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_budget_sim_user_period", "budget_sim_scenarios", ["user_id", "period_month"]
    )

    op.create_table(
        "budget_sim_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "scenario_id",
            sa.Integer(),
            sa.ForeignKey("budget_sim_scenarios.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("delta_monthly", MONEY, nullable=False, server_default="0"),
        sa.Column("delta_weekly", sa.JSON()),
        sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("scenario_id", "category_id", name="uq_budget_sim_item"),
    )

    op.create_table(
        "kv_store",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=200), nullable=False, unique=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("kv_store")
    op.drop_table("budget_sim_items")
    op.drop_index("ix_budget_sim_user_period", table_name="budget_sim_scenarios")
    op.drop_table("budget_sim_scenarios")
    op.drop_table("salary_simulation_items")
    op.drop_index("ix_salary_sim_user_period", table_name="salary_simulations")
    op.drop_table("salary_simulations")
    op.drop_table("goals")
    op.drop_index("ix_debts_user_due", table_name="debts")
    op.drop_table("debts")
    op.drop_index("ix_charges_user_due", table_name="subscription_charges")
    op.drop_table("subscription_charges")
    op.drop_table("subscriptions")
    op.drop_table("weekly_budgets")
    op.drop_index("ix_budget_user_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_user", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("categories")
