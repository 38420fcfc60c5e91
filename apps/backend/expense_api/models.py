from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
    Boolean,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.mutable import MutableDict

from .core.database import Base


def utcnow_naive() -> datetime:
    """Return the current instant as a naive UTC datetime (storage format)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    profile: Mapped["UserProfile"] = relationship(back_populates="user", uselist=False)


class UserProfile(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100))
    base_currency: Mapped[str | None] = mapped_column(String(3))
    locale: Mapped[str | None] = mapped_column(String(32))
    timezone: Mapped[str | None] = mapped_column(String(64))

    user: Mapped[User] = relationship(back_populates="profile")


class TxnType(str, Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"


class Category(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("user.id"))  # NULL = 공용 카테고리
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "type", "name", name="uq_category_name"),)


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # UTC
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id"))
    note: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict[str, Any] | None] = mapped_column(MutableDict.as_mutable(JSON), nullable=True)
    # Interval catch-up occurrences (see RecurringTransaction)
    recurring_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("recurringtransaction.id", ondelete="SET NULL")
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime)

    category: Mapped["Category | None"] = relationship("Category")

    __table_args__ = (
        Index("ix_txn_user_date", "user_id", "occurred_at"),
        UniqueConstraint(
            "user_id",
            "recurring_transaction_id",
            "scheduled_for",
            name="uq_txn_recurring_occurrence",
        ),
    )


class BudgetPeriod(str, Enum):
    MONTH = "MONTH"
    WEEK = "WEEK"


class Budget(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id"))
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "category_id", "period_start", "period_end", name="uq_budget_span"),
    )


class RecurringFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class RecurringScheduleMixin:
    """Schedule + pointer columns shared by anchored rules.

    ``start_date``/``end_date``/``next_run_at``/``last_run_at`` are naive UTC.
    ``weekday`` follows 0=Sunday .. 6=Saturday.
    """

    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    frequency: Mapped[RecurringFrequency] = mapped_column(SAEnum(RecurringFrequency), nullable=False)
    day_of_month: Mapped[int | None] = mapped_column(Integer)
    weekday: Mapped[int | None] = mapped_column(Integer)
    time_of_day: Mapped[str] = mapped_column(String(5), nullable=False, default="07:00")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    note: Mapped[str | None] = mapped_column(Text)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime)


class RecurringRule(Base, RecurringScheduleMixin, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id"))

    category: Mapped["Category | None"] = relationship("Category")

    __table_args__ = (
        Index("ix_recurring_rule_due", "enabled", "next_run_at"),
        Index("ix_recurring_rule_user", "user_id", "updated_at"),
    )


class RecurringRunLog(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rule_id: Mapped[int] = mapped_column(ForeignKey("recurringrule.id", ondelete="CASCADE"), nullable=False)
    occurred_date: Mapped[date] = mapped_column(Date, nullable=False)  # rule timezone 기준 날짜
    status: Mapped[RunStatus] = mapped_column(SAEnum(RunStatus), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    transaction_id: Mapped[int | None] = mapped_column(ForeignKey("transaction.id", ondelete="SET NULL"))

    __table_args__ = (
        UniqueConstraint("rule_id", "occurred_date", name="uq_recurring_run_rule_date"),
    )


class RecurringBudgetRule(Base, RecurringScheduleMixin, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id"))

    category: Mapped["Category | None"] = relationship("Category")

    __table_args__ = (
        Index("ix_recurring_budget_rule_due", "enabled", "next_run_at"),
        Index("ix_recurring_budget_rule_user", "user_id", "updated_at"),
    )


class RecurringBudgetRunLog(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rule_id: Mapped[int] = mapped_column(ForeignKey("recurringbudgetrule.id", ondelete="CASCADE"), nullable=False)
    occurred_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[RunStatus] = mapped_column(SAEnum(RunStatus), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    budget_id: Mapped[int | None] = mapped_column(ForeignKey("budget.id", ondelete="SET NULL"))

    __table_args__ = (
        UniqueConstraint("rule_id", "occurred_date", name="uq_recurring_budget_run_rule_date"),
    )


class RecurringTransaction(Base, TimestampMixin):
    """Interval-based recurrence (every N days/weeks/months) with catch-up."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    note: Mapped[str | None] = mapped_column(Text)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id"))
    frequency: Mapped[RecurringFrequency] = mapped_column(SAEnum(RecurringFrequency), nullable=False)
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    day_of_month: Mapped[int | None] = mapped_column(Integer)
    weekday: Mapped[int | None] = mapped_column(Integer)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped["Category | None"] = relationship("Category")

    __table_args__ = (
        Index("ix_recurring_txn_due", "is_active", "next_run_at"),
    )
