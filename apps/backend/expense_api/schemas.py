from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .models import (
    RecurringFrequency,
    RunStatus,
    TxnType,
)
from .services.recurring_schedule import is_valid_time_of_day, normalize_timezone


def _validate_currency(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if len(v) != 3:
        raise ValueError("currency must be 3-letter code")
    return v.upper()


def _validate_amount(v: Decimal) -> Decimal:
    if not v.is_finite():
        raise ValueError("amount must be finite")
    if v <= 0:
        raise ValueError("amount must be positive")
    return v


def _as_utc(v: datetime | None) -> datetime | None:
    if v is None or v.tzinfo is not None:
        return v
    return v.replace(tzinfo=timezone.utc)


# Anchored recurring rule schemas (ledger + budget)
class RecurringRuleBase(BaseModel):
    frequency: RecurringFrequency
    day_of_month: Optional[int] = None
    weekday: Optional[int] = None  # 0=Sunday .. 6=Saturday
    time_of_day: Optional[str] = None
    timezone: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    amount: Decimal
    currency: Optional[str] = None
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=255)
    # 업데이트 의도: 명시 플래그 또는 원문 메시지의 키워드
    prefer_update: bool = False
    source_message: Optional[str] = None

    @field_validator("currency")
    def currency_len(cls, v: str | None):
        return _validate_currency(v)

    @field_validator("amount")
    def amount_positive(cls, v: Decimal):
        return _validate_amount(v)

    @field_validator("day_of_month")
    def validate_day(cls, v: int | None):
        if v is not None and not (1 <= v <= 31):
            raise ValueError("day_of_month must be between 1 and 31")
        return v

    @field_validator("weekday")
    def validate_weekday(cls, v: int | None):
        if v is not None and not (0 <= v <= 6):
            raise ValueError("weekday must be between 0 (Sunday) and 6 (Saturday)")
        return v

    @field_validator("time_of_day")
    def validate_time_of_day(cls, v: str | None):
        if v is None or not v.strip():
            return None
        if not is_valid_time_of_day(v):
            raise ValueError("time_of_day must look like HH:MM")
        return v

    @field_validator("timezone")
    def validate_timezone(cls, v: str | None):
        if v is None or not v.strip():
            return None
        return normalize_timezone(v)

    @field_validator("note")
    def strip_note(cls, v: str | None):
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def normalize_schedule(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        # anchor는 해당 frequency에서만 의미가 있음
        if self.frequency != RecurringFrequency.MONTHLY:
            self.day_of_month = None
        if self.frequency != RecurringFrequency.WEEKLY:
            self.weekday = None
        return self


class RecurringRuleCreate(RecurringRuleBase):
    type: TxnType


class RecurringBudgetRuleCreate(RecurringRuleBase):
    pass


class RecurringRuleOutBase(BaseModel):
    id: int
    user_id: int
    enabled: bool
    frequency: RecurringFrequency
    day_of_month: Optional[int]
    weekday: Optional[int]
    time_of_day: str
    timezone: str
    start_date: datetime
    end_date: Optional[datetime]
    amount: float
    currency: str
    category_id: Optional[int]
    note: Optional[str]
    next_run_at: Optional[datetime]
    last_run_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("start_date", "end_date", "next_run_at", "last_run_at", "created_at", "updated_at")
    def attach_utc(cls, v: datetime | None):
        return _as_utc(v)


class RecurringRuleOut(RecurringRuleOutBase):
    type: TxnType


class RecurringBudgetRuleOut(RecurringRuleOutBase):
    pass


class RecurringRuleMutationOut(BaseModel):
    rule: RecurringRuleOut
    action: Literal["created", "updated"]


class RecurringBudgetRuleMutationOut(BaseModel):
    rule: RecurringBudgetRuleOut
    action: Literal["created", "updated"]


class RecurringRunLogOut(BaseModel):
    id: int
    rule_id: int
    occurred_date: date
    status: RunStatus
    message: Optional[str]
    transaction_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RecurringBudgetRunLogOut(BaseModel):
    id: int
    rule_id: int
    occurred_date: date
    status: RunStatus
    message: Optional[str]
    budget_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RecurringRunSummaryOut(BaseModel):
    processed: int = 0
    created: int = 0
    skipped: int = 0
    retired: int = 0
    failed: int = 0

    model_config = ConfigDict(from_attributes=True)


# Interval (catch-up) recurring transaction schemas
class RecurringTransactionCreate(BaseModel):
    type: TxnType
    amount: Decimal
    currency: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=255)
    category_id: Optional[int] = None
    frequency: RecurringFrequency
    interval: int = Field(default=1, ge=1)
    day_of_month: Optional[int] = None
    weekday: Optional[int] = None  # 0=Sunday .. 6=Saturday
    start_date: datetime
    end_date: Optional[datetime] = None
    timezone: Optional[str] = Field(default=None, max_length=100)

    @field_validator("currency")
    def currency_len(cls, v: str | None):
        return _validate_currency(v)

    @field_validator("amount")
    def amount_positive(cls, v: Decimal):
        return _validate_amount(v)

    @field_validator("day_of_month")
    def validate_day(cls, v: int | None):
        if v is not None and not (1 <= v <= 31):
            raise ValueError("day_of_month must be between 1 and 31")
        return v

    @field_validator("weekday")
    def validate_weekday(cls, v: int | None):
        if v is not None and not (0 <= v <= 6):
            raise ValueError("weekday must be between 0 (Sunday) and 6 (Saturday)")
        return v

    @field_validator("timezone")
    def validate_timezone(cls, v: str | None):
        if v is None or not v.strip():
            return None
        return normalize_timezone(v)

    @model_validator(mode="after")
    def validate_frequency(self):
        if self.frequency == RecurringFrequency.YEARLY:
            raise ValueError("interval recurrences support DAILY, WEEKLY and MONTHLY only")
        if self.frequency != RecurringFrequency.MONTHLY:
            self.day_of_month = None
        if self.frequency != RecurringFrequency.WEEKLY:
            self.weekday = None
        return self


class RecurringTransactionOut(BaseModel):
    id: int
    user_id: int
    type: TxnType
    amount: float
    currency: str
    note: Optional[str]
    category_id: Optional[int]
    frequency: RecurringFrequency
    interval: int
    day_of_month: Optional[int]
    weekday: Optional[int]
    start_date: datetime
    end_date: Optional[datetime]
    timezone: str
    next_run_at: Optional[datetime]
    last_run_at: Optional[datetime]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("start_date", "end_date", "next_run_at", "last_run_at", "created_at", "updated_at")
    def attach_utc(cls, v: datetime | None):
        return _as_utc(v)


class CatchUpSummaryOut(BaseModel):
    processed: int = 0
    created: int = 0
    duplicates: int = 0
    retired: int = 0
    failed: int = 0

    model_config = ConfigDict(from_attributes=True)


class CancelResult(BaseModel):
    success: bool

