"""
주기(interval) 기반 반복 거래 서비스

N일/N주/N개월마다 발생하는 거래를 처리합니다. 서버가 멈춰 있던 동안 밀린
occurrence는 tick당 최대 RECURRING_MAX_CATCH_UP 개까지 따라잡고, 나머지는
다음 tick에서 이어서 처리합니다.

중복 생성은 (user_id, recurring_transaction_id, scheduled_for) 유니크 제약으로 막습니다.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from expense_api import models
from expense_api.core.config import settings
from expense_api.services.recurring_schedule import normalize_timezone, normalize_weekday
from expense_api.utils.dates import (
    add_months,
    days_in_month,
    from_utc_naive,
    to_utc_naive,
    utcnow,
)


OCCURRENCE_CONSTRAINT = "uq_txn_recurring_occurrence"
UNIQUE_VIOLATION_SQLSTATE = "23505"


SUPPORTED_FREQUENCIES = (
    models.RecurringFrequency.DAILY,
    models.RecurringFrequency.WEEKLY,
    models.RecurringFrequency.MONTHLY,
)


@dataclass(frozen=True)
class IntervalSchedule:
    frequency: models.RecurringFrequency
    interval: int = 1
    day_of_month: Optional[int] = None
    weekday: Optional[int] = None  # 0=Sunday .. 6=Saturday


@dataclass
class CatchUpSummary:
    processed: int = 0
    created: int = 0
    duplicates: int = 0
    retired: int = 0
    failed: int = 0


def is_duplicate_occurrence(exc: IntegrityError) -> bool:
    """True only when ``exc`` is the occurrence unique constraint firing.

    NOT NULL, foreign key and other integrity failures are real errors.
    """
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE
    message = str(orig)
    if OCCURRENCE_CONSTRAINT in message:
        return True
    # SQLite: "UNIQUE constraint failed: transaction.user_id, transaction.recurring_transaction_id, ..."
    return message.startswith("UNIQUE constraint failed") and "transaction.scheduled_for" in message


def resolve_monthly_occurrence(base: datetime, target_day: int) -> datetime:
    """Clamp ``target_day`` into ``base``'s month; roll to next month if already behind ``base``."""
    candidate = base.replace(day=min(target_day, days_in_month(base.year, base.month)))
    if candidate < base:
        next_month = add_months(base, 1)
        candidate = next_month.replace(day=min(target_day, days_in_month(next_month.year, next_month.month)))
    return candidate


def resolve_weekly_occurrence(base: datetime, weekday: int) -> datetime:
    target = normalize_weekday(weekday, base.isoweekday())
    diff = (target - base.isoweekday() + 7) % 7
    return base + timedelta(days=diff)


def resolve_initial_occurrence(start: datetime, schedule: IntervalSchedule) -> datetime:
    if schedule.frequency == models.RecurringFrequency.MONTHLY:
        day = schedule.day_of_month if schedule.day_of_month is not None else start.day
        return resolve_monthly_occurrence(start, day)
    if schedule.frequency == models.RecurringFrequency.WEEKLY:
        weekday = schedule.weekday if schedule.weekday is not None else start.isoweekday() % 7
        return resolve_weekly_occurrence(start, weekday)
    return start


def compute_next_occurrence(previous: datetime, schedule: IntervalSchedule) -> datetime:
    if schedule.frequency == models.RecurringFrequency.MONTHLY:
        next_base = add_months(previous, schedule.interval)
        day = schedule.day_of_month if schedule.day_of_month is not None else next_base.day
        return resolve_monthly_occurrence(next_base, day)
    if schedule.frequency == models.RecurringFrequency.WEEKLY:
        return previous + timedelta(weeks=schedule.interval)
    return previous + timedelta(days=schedule.interval)


def _localize(value: datetime, zone: ZoneInfo) -> datetime:
    # naive 입력은 해당 타임존의 벽시계 시각으로 해석
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def _schedule_of(recurrence: models.RecurringTransaction) -> IntervalSchedule:
    return IntervalSchedule(
        frequency=recurrence.frequency,
        interval=recurrence.interval or 1,
        day_of_month=recurrence.day_of_month,
        weekday=recurrence.weekday,
    )


class RecurringTransactionService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def create(self, user_id: int, payload) -> models.RecurringTransaction:
        if payload.frequency not in SUPPORTED_FREQUENCIES:
            raise ValueError(f"Unsupported frequency for interval recurrence: {payload.frequency}")

        profile = (
            self.db.query(models.UserProfile)
            .filter(models.UserProfile.user_id == user_id)
            .first()
        )
        tz_name = normalize_timezone(payload.timezone, default=profile.timezone if profile else None)
        zone = ZoneInfo(tz_name)
        currency = (
            payload.currency
            or (profile.base_currency if profile else None)
            or settings.DEFAULT_CURRENCY
        ).upper()

        start = _localize(payload.start_date, zone)
        end = _localize(payload.end_date, zone) if payload.end_date else None
        if end is not None and end < start:
            raise ValueError("end_date must be greater than or equal to start_date")

        interval = payload.interval or 1
        if interval < 1:
            raise ValueError("interval must be at least 1")

        schedule = IntervalSchedule(
            frequency=payload.frequency,
            interval=interval,
            day_of_month=(
                (payload.day_of_month or start.day)
                if payload.frequency == models.RecurringFrequency.MONTHLY
                else None
            ),
            weekday=(
                (payload.weekday if payload.weekday is not None else start.isoweekday() % 7)
                if payload.frequency == models.RecurringFrequency.WEEKLY
                else None
            ),
        )

        first = resolve_initial_occurrence(start, schedule)
        if end is not None and first > end:
            raise ValueError("start_date is after the specified end_date")

        record = models.RecurringTransaction(
            user_id=user_id,
            type=payload.type,
            amount=Decimal(str(payload.amount)),
            currency=currency,
            note=(payload.note or "").strip() or None,
            category_id=payload.category_id,
            frequency=schedule.frequency,
            interval=schedule.interval,
            day_of_month=schedule.day_of_month,
            weekday=schedule.weekday,
            start_date=to_utc_naive(first),
            end_date=to_utc_naive(end) if end else None,
            timezone=tz_name,
            next_run_at=to_utc_naive(first),
            is_active=True,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(
            "Created recurring transaction id={} user={} next_run_at={}",
            record.id,
            user_id,
            record.next_run_at,
        )
        return record

    def list(self, user_id: int) -> list[models.RecurringTransaction]:
        return (
            self.db.query(models.RecurringTransaction)
            .filter(models.RecurringTransaction.user_id == user_id)
            .order_by(models.RecurringTransaction.created_at.desc(), models.RecurringTransaction.id.desc())
            .all()
        )

    def cancel(self, user_id: int, recurrence_id: int) -> bool:
        record = (
            self.db.query(models.RecurringTransaction)
            .filter(
                models.RecurringTransaction.id == recurrence_id,
                models.RecurringTransaction.user_id == user_id,
            )
            .first()
        )
        if record is None:
            raise LookupError("Recurring transaction not found")
        record.is_active = False
        record.next_run_at = None
        self.db.commit()
        logger.info("Cancelled recurring transaction id={}", recurrence_id)
        return True

    def process_due_occurrences(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> CatchUpSummary:
        current = from_utc_naive(now) if now is not None else utcnow()
        due = (
            self.db.query(models.RecurringTransaction)
            .filter(
                models.RecurringTransaction.is_active.is_(True),
                models.RecurringTransaction.next_run_at.isnot(None),
                models.RecurringTransaction.next_run_at <= to_utc_naive(current),
            )
            .order_by(models.RecurringTransaction.next_run_at.asc(), models.RecurringTransaction.id.asc())
            .limit(limit or settings.RECURRING_BATCH_LIMIT)
            .all()
        )

        summary = CatchUpSummary()
        for recurrence in due:
            recurrence_id = recurrence.id
            summary.processed += 1
            try:
                self._process_single(recurrence, current, summary)
            except Exception:
                self.db.rollback()
                summary.failed += 1
                logger.exception("Failed to process recurring transaction id={}", recurrence_id)

        if summary.processed:
            logger.info(
                "Processed {} recurring transaction(s): created={} duplicates={} retired={} failed={}",
                summary.processed,
                summary.created,
                summary.duplicates,
                summary.retired,
                summary.failed,
            )
        return summary

    def _process_single(
        self,
        recurrence: models.RecurringTransaction,
        now: datetime,
        summary: CatchUpSummary,
    ) -> None:
        zone = ZoneInfo(normalize_timezone(recurrence.timezone))
        schedule = _schedule_of(recurrence)
        end = from_utc_naive(recurrence.end_date) if recurrence.end_date else None

        if recurrence.next_run_at is not None:
            next_occurrence = from_utc_naive(recurrence.next_run_at).astimezone(zone)
        else:
            next_occurrence = resolve_initial_occurrence(
                from_utc_naive(recurrence.start_date).astimezone(zone), schedule
            )

        occurrences: list[datetime] = []
        while (
            next_occurrence <= now
            and (end is None or next_occurrence <= end)
            and len(occurrences) < settings.RECURRING_MAX_CATCH_UP
        ):
            occurrences.append(next_occurrence)
            next_occurrence = compute_next_occurrence(next_occurrence, schedule)

        should_continue = end is None or next_occurrence <= end
        if len(occurrences) >= settings.RECURRING_MAX_CATCH_UP and next_occurrence <= now and should_continue:
            logger.debug(
                "Recurring transaction id={} still has pending occurrences; continuing next tick",
                recurrence.id,
            )

        recurrence_id = recurrence.id
        for occurrence in occurrences:
            if self._create_occurrence(recurrence, occurrence):
                summary.created += 1
            else:
                summary.duplicates += 1

        # commit/rollback 이후 재조회
        recurrence = self.db.get(models.RecurringTransaction, recurrence_id)
        if occurrences:
            recurrence.last_run_at = to_utc_naive(occurrences[-1])
        if should_continue:
            recurrence.next_run_at = to_utc_naive(next_occurrence)
        else:
            recurrence.next_run_at = None
            recurrence.is_active = False
            summary.retired += 1
            logger.info("Recurring transaction id={} reached its end date", recurrence_id)
        self.db.commit()

    def _build_occurrence(self, recurrence: models.RecurringTransaction, scheduled_for: datetime) -> models.Transaction:
        return models.Transaction(
            user_id=recurrence.user_id,
            occurred_at=scheduled_for,
            type=recurrence.type,
            amount=recurrence.amount,
            currency=recurrence.currency,
            category_id=recurrence.category_id,
            note=recurrence.note,
            recurring_transaction_id=recurrence.id,
            scheduled_for=scheduled_for,
            meta={"source": "recurring_transaction", "recurring_transaction_id": recurrence.id},
        )

    def _create_occurrence(self, recurrence: models.RecurringTransaction, occurrence: datetime) -> bool:
        txn = self._build_occurrence(recurrence, to_utc_naive(occurrence))
        self.db.add(txn)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if not is_duplicate_occurrence(exc):
                raise
            logger.debug(
                "Skipping duplicate occurrence for recurring transaction id={} at {}",
                recurrence.id,
                occurrence.astimezone(timezone.utc).isoformat(),
            )
            return False
        return True
