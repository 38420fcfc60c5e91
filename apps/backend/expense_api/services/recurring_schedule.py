"""
반복 일정 계산기

책임:
- 시각 문자열(HH:MM) 파싱/포맷
- 타임존 정규화 및 검증
- 기준 시각 이후의 다음 발생 시각 계산 (DAILY / WEEKLY / MONTHLY / YEARLY)

DB에 접근하지 않는 순수 함수들입니다.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from expense_api.core.config import settings
from expense_api.models import RecurringFrequency
from expense_api.utils.dates import days_in_month, from_utc_naive


MAX_ITERATIONS = 500
DEFAULT_HOUR = 7
DEFAULT_MINUTE = 0

_TIME_OF_DAY_RE = re.compile(r"^(\d{1,2})(?::|h)?(\d{1,2})?$")
_WHITESPACE_RE = re.compile(r"\s+")


class InvalidTimezoneError(ValueError):
    pass


class ScheduleExhaustedError(ValueError):
    """The recurrence cannot produce any occurrence inside its window."""


@dataclass(frozen=True)
class TimeOfDay:
    hour: int
    minute: int

    def __str__(self) -> str:
        return format_time_of_day(self.hour, self.minute)


@dataclass(frozen=True)
class ScheduleContext:
    frequency: RecurringFrequency
    hour: int
    minute: int
    timezone: str
    start: datetime
    end: Optional[datetime] = None
    day_of_month: Optional[int] = None
    weekday: Optional[int] = None  # 0=Sunday .. 6=Saturday

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _match_time_of_day(value: str):
    normalized = _WHITESPACE_RE.sub("", value.strip().lower())
    return _TIME_OF_DAY_RE.match(normalized)


def is_valid_time_of_day(value: str | None) -> bool:
    if not value:
        return False
    match = _match_time_of_day(value)
    if not match:
        return False
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    return hour <= 23 and minute <= 59


def parse_time_of_day(value: str | None) -> TimeOfDay:
    """Parse "7", "07:30", "7h30", "0730"; anything unparseable falls back to 07:00."""
    if not value:
        return TimeOfDay(DEFAULT_HOUR, DEFAULT_MINUTE)

    match = _match_time_of_day(value)
    if not match:
        return TimeOfDay(DEFAULT_HOUR, DEFAULT_MINUTE)

    hour = min(max(int(match.group(1)), 0), 23)
    minute = min(max(int(match.group(2)), 0), 59) if match.group(2) else 0
    return TimeOfDay(hour, minute)


def normalize_time_of_day(value: str | None) -> TimeOfDay:
    if value:
        return parse_time_of_day(value)
    return parse_time_of_day(settings.DEFAULT_TIME_OF_DAY)


def format_time_of_day(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def normalize_timezone(value: str | None, default: str | None = None) -> str:
    candidate = value.strip() if value and value.strip() else (default or settings.APP_TIMEZONE)
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimezoneError(f"Invalid timezone: {candidate}") from exc
    return candidate


def local_day(value: date | datetime, zone: ZoneInfo) -> date:
    """Calendar day of ``value`` in ``zone``.

    Aware datetimes are converted; naive datetimes are taken as wall-clock time
    in ``zone``; plain dates pass through.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(zone).date()
    return value


def build_start(value: date | datetime, zone: ZoneInfo, time_of_day: TimeOfDay) -> datetime:
    day = local_day(value, zone)
    return datetime.combine(day, time(time_of_day.hour, time_of_day.minute), tzinfo=zone)


def build_end(value: date | datetime, zone: ZoneInfo) -> datetime:
    day = local_day(value, zone)
    return datetime.combine(day, time.max, tzinfo=zone)


def build_schedule_context(rule) -> ScheduleContext:
    """Rebuild the calculator context from a stored rule row."""
    tz_name = normalize_timezone(rule.timezone)
    zone = ZoneInfo(tz_name)
    tod = parse_time_of_day(rule.time_of_day)
    start = build_start(from_utc_naive(rule.start_date), zone, tod)
    end = build_end(from_utc_naive(rule.end_date), zone) if rule.end_date else None
    return ScheduleContext(
        frequency=rule.frequency,
        hour=tod.hour,
        minute=tod.minute,
        timezone=tz_name,
        start=start,
        end=end,
        day_of_month=rule.day_of_month,
        weekday=rule.weekday,
    )


def _utc(value: datetime) -> datetime:
    return from_utc_naive(value) if value.tzinfo is None else value.astimezone(timezone.utc)


def calculate_next_run(context: ScheduleContext, after: datetime) -> Optional[datetime]:
    """Next occurrence strictly after ``after`` inside [start, end], or None.

    The returned datetime is aware and expressed in the rule's timezone.
    """
    zone = context.zone
    start = context.start.astimezone(zone)
    reference = _utc(after) if _utc(after) >= _utc(start) else _utc(start)
    cursor = reference.astimezone(zone)

    for _ in range(MAX_ITERATIONS):
        occurrence = _build_occurrence(cursor, context, start)
        if _utc(occurrence) < _utc(start) or _utc(occurrence) <= reference:
            cursor = _increment_cursor(context, occurrence)
            continue
        if context.end is not None and _utc(occurrence) > _utc(context.end):
            return None
        return occurrence

    return None


def _build_occurrence(cursor: datetime, context: ScheduleContext, start: datetime) -> datetime:
    base = cursor.replace(hour=context.hour, minute=context.minute, second=0, microsecond=0)

    if context.frequency == RecurringFrequency.DAILY:
        return base

    if context.frequency == RecurringFrequency.WEEKLY:
        target = normalize_weekday(context.weekday, start.isoweekday())
        diff = (target + 7 - base.isoweekday()) % 7
        return base + timedelta(days=diff)

    if context.frequency == RecurringFrequency.MONTHLY:
        day = resolve_day_of_month(context.day_of_month, base.year, base.month, start.day)
        return base.replace(day=day)

    if context.frequency == RecurringFrequency.YEARLY:
        day = min(start.day, days_in_month(base.year, start.month))
        return base.replace(month=start.month, day=day)

    raise ValueError(f"Unsupported frequency: {context.frequency}")


def _increment_cursor(context: ScheduleContext, occurrence: datetime) -> datetime:
    if context.frequency == RecurringFrequency.WEEKLY:
        return occurrence + timedelta(weeks=1)
    if context.frequency == RecurringFrequency.MONTHLY:
        year, month = (occurrence.year + 1, 1) if occurrence.month == 12 else (occurrence.year, occurrence.month + 1)
        return occurrence.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)
    if context.frequency == RecurringFrequency.YEARLY:
        return occurrence.replace(year=occurrence.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return occurrence + timedelta(days=1)


def normalize_weekday(weekday: int | None, fallback: int) -> int:
    """Map 0=Sunday..6=Saturday onto ISO 1=Monday..7=Sunday (0 becomes 7)."""
    if weekday is not None:
        if weekday == 0:
            return 7
        return min(max(weekday, 1), 7)
    return min(max(fallback, 1), 7)


def resolve_day_of_month(day_of_month: int | None, year: int, month: int, fallback_day: int) -> int:
    base = day_of_month if day_of_month is not None else fallback_day
    target = min(max(base, 1), 31)
    return min(target, days_in_month(year, month))
