"""initial schema: users, ledger, budgets, recurring rules

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TXN_TYPE = sa.Enum("EXPENSE", "INCOME", name="txntype")
FREQUENCY = sa.Enum("DAILY", "WEEKLY", "MONTHLY", "YEARLY", name="recurringfrequency")
RUN_STATUS = sa.Enum("SUCCESS", "ERROR", name="runstatus")
BUDGET_PERIOD = sa.Enum("MONTH", "WEEK", name="budgetperiod")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _schedule_columns() -> list[sa.Column]:
    return [
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("weekday", sa.Integer(), nullable=True),
        sa.Column("time_of_day", sa.String(length=5), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("next_run_at", sa.DateTime(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "userprofile",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("base_currency", sa.String(length=3), nullable=True),
        sa.Column("locale", sa.String(length=32), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "category",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TXN_TYPE, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "type", "name", name="uq_category_name"),
    )
    op.create_table(
        "recurringtransaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("type", TXN_TYPE, nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=True),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("interval", sa.Integer(), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("weekday", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("next_run_at", sa.DateTime(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_recurring_txn_due", "recurringtransaction", ["is_active", "next_run_at"], unique=False)

    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("type", TXN_TYPE, nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column(
            "recurring_transaction_id",
            sa.Integer(),
            sa.ForeignKey("recurringtransaction.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("scheduled_for", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "recurring_transaction_id",
            "scheduled_for",
            name="uq_txn_recurring_occurrence",
        ),
    )
    op.create_index("ix_txn_user_date", "transaction", ["user_id", "occurred_at"], unique=False)

    op.create_table(
        "budget",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("period", BUDGET_PERIOD, nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "category_id", "period_start", "period_end", name="uq_budget_span"),
    )

    op.create_table(
        "recurringrule",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("type", TXN_TYPE, nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=True),
        *_schedule_columns(),
        *_timestamps(),
    )
    op.create_index("ix_recurring_rule_due", "recurringrule", ["enabled", "next_run_at"], unique=False)
    op.create_index("ix_recurring_rule_user", "recurringrule", ["user_id", "updated_at"], unique=False)

    op.create_table(
        "recurringrunlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("rule_id", sa.Integer(), sa.ForeignKey("recurringrule.id", ondelete="CASCADE"), nullable=False),
        sa.Column("occurred_date", sa.Date(), nullable=False),
        sa.Column("status", RUN_STATUS, nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transaction.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("rule_id", "occurred_date", name="uq_recurring_run_rule_date"),
    )

    op.create_table(
        "recurringbudgetrule",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=True),
        *_schedule_columns(),
        *_timestamps(),
    )
    op.create_index("ix_recurring_budget_rule_due", "recurringbudgetrule", ["enabled", "next_run_at"], unique=False)
    op.create_index("ix_recurring_budget_rule_user", "recurringbudgetrule", ["user_id", "updated_at"], unique=False)

    op.create_table(
        "recurringbudgetrunlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "rule_id",
            sa.Integer(),
            sa.ForeignKey("recurringbudgetrule.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("occurred_date", sa.Date(), nullable=False),
        sa.Column("status", RUN_STATUS, nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("budget_id", sa.Integer(), sa.ForeignKey("budget.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("rule_id", "occurred_date", name="uq_recurring_budget_run_rule_date"),
    )


def downgrade() -> None:
    op.drop_table("recurringbudgetrunlog")
    op.drop_index("ix_recurring_budget_rule_user", table_name="recurringbudgetrule")
    op.drop_index("ix_recurring_budget_rule_due", table_name="recurringbudgetrule")
    op.drop_table("recurringbudgetrule")
    op.drop_table("recurringrunlog")
    op.drop_index("ix_recurring_rule_user", table_name="recurringrule")
    op.drop_index("ix_recurring_rule_due", table_name="recurringrule")
    op.drop_table("recurringrule")
    op.drop_table("budget")
    op.drop_index("ix_txn_user_date", table_name="transaction")
    op.drop_table("transaction")
    op.drop_index("ix_recurring_txn_due", table_name="recurringtransaction")
    op.drop_table("recurringtransaction")
    op.drop_table("category")
    op.drop_table("userprofile")
    op.drop_table("user")
