from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from expense_api.models import RecurringFrequency
from expense_api.services.recurring_schedule import (
    InvalidTimezoneError,
    ScheduleContext,
    TimeOfDay,
    build_end,
    build_start,
    calculate_next_run,
    is_valid_time_of_day,
    normalize_timezone,
    parse_time_of_day,
)


HCM = "Asia/Ho_Chi_Minh"


def _context(
    frequency: RecurringFrequency,
    start: date,
    *,
    tz: str = HCM,
    hour: int = 7,
    minute: int = 0,
    day_of_month: int | None = None,
    weekday: int | None = None,
    end: date | None = None,
) -> ScheduleContext:
    zone = ZoneInfo(tz)
    tod = TimeOfDay(hour, minute)
    return ScheduleContext(
        frequency=frequency,
        hour=hour,
        minute=minute,
        timezone=tz,
        start=build_start(start, zone, tod),
        end=build_end(end, zone) if end else None,
        day_of_month=day_of_month,
        weekday=weekday,
    )


def _walk(ctx: ScheduleContext, count: int) -> list[datetime]:
    out: list[datetime] = []
    after = ctx.start
    for _ in range(count):
        nxt = calculate_next_run(ctx, after)
        assert nxt is not None
        out.append(nxt)
        after = nxt + timedelta(minutes=1)
    return out


def test_monthly_day_31_clamps_to_short_months():
    ctx = _context(RecurringFrequency.MONTHLY, date(2024, 1, 1), day_of_month=31)
    runs = _walk(ctx, 4)
    assert [r.date() for r in runs] == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]
    assert all((r.hour, r.minute) == (7, 0) for r in runs)


def test_monthly_day_31_clamps_to_feb_28_outside_leap_years():
    ctx = _context(RecurringFrequency.MONTHLY, date(2023, 1, 1), day_of_month=31)
    assert [r.date() for r in _walk(ctx, 4)] == [
        date(2023, 1, 31),
        date(2023, 2, 28),
        date(2023, 3, 31),
        date(2023, 4, 30),
    ]


def test_monthly_without_anchor_uses_start_day():
    ctx = _context(RecurringFrequency.MONTHLY, date(2024, 1, 15))
    runs = _walk(ctx, 2)
    assert [r.date() for r in runs] == [date(2024, 2, 15), date(2024, 3, 15)]


@pytest.mark.parametrize(
    "start, first",
    [
        (date(2024, 1, 1), date(2024, 1, 7)),  # Monday
        (date(2024, 1, 3), date(2024, 1, 7)),  # Wednesday
        (date(2024, 1, 6), date(2024, 1, 7)),  # Saturday
        (date(2024, 1, 7), date(2024, 1, 14)),  # Sunday; the start instant itself is excluded
    ],
)
def test_weekly_sunday_anchor(start, first):
    # weekday 0 means Sunday
    ctx = _context(RecurringFrequency.WEEKLY, start, weekday=0)
    runs = _walk(ctx, 3)
    assert [r.date() for r in runs] == [first + timedelta(weeks=i) for i in range(3)]
    assert all(r.isoweekday() == 7 for r in runs)


def test_daily_excludes_start_instant():
    ctx = _context(RecurringFrequency.DAILY, date(2024, 1, 1), hour=8, minute=30)
    nxt = calculate_next_run(ctx, datetime(2023, 12, 1, tzinfo=timezone.utc))
    assert nxt == datetime(2024, 1, 2, 8, 30, tzinfo=ZoneInfo(HCM))


def test_yearly_leap_day_clamps():
    ctx = _context(RecurringFrequency.YEARLY, date(2024, 2, 29))
    runs = _walk(ctx, 4)
    assert [r.date() for r in runs] == [
        date(2025, 2, 28),
        date(2026, 2, 28),
        date(2027, 2, 28),
        date(2028, 2, 29),
    ]


def test_result_is_expressed_in_rule_zone():
    ctx = _context(RecurringFrequency.MONTHLY, date(2024, 1, 1), day_of_month=1)
    nxt = calculate_next_run(ctx, datetime(2024, 1, 10, tzinfo=timezone.utc))
    assert nxt.utcoffset() == timedelta(hours=7)
    assert nxt.astimezone(timezone.utc) == datetime(2024, 2, 1, 0, 0, tzinfo=timezone.utc)


def test_returns_none_past_end_date():
    ctx = _context(RecurringFrequency.DAILY, date(2024, 1, 1), end=date(2024, 1, 3))
    last = calculate_next_run(ctx, datetime(2024, 1, 2, 7, 1, tzinfo=ZoneInfo(HCM)))
    assert last is not None and last.date() == date(2024, 1, 3)
    assert calculate_next_run(ctx, last + timedelta(minutes=1)) is None


def test_reference_before_start_yields_first_occurrence_after_start():
    ctx = _context(RecurringFrequency.MONTHLY, date(2024, 6, 10), day_of_month=5)
    nxt = calculate_next_run(ctx, datetime(2020, 1, 1, tzinfo=timezone.utc))
    assert nxt.date() == date(2024, 7, 5)


def test_dst_zone_keeps_wall_clock_time():
    ctx = _context(RecurringFrequency.DAILY, date(2024, 3, 8), tz="America/New_York", hour=9)
    runs = _walk(ctx, 3)
    assert [(r.date(), r.hour) for r in runs] == [
        (date(2024, 3, 9), 9),
        (date(2024, 3, 10), 9),
        (date(2024, 3, 11), 9),
    ]
    assert runs[0].utcoffset() != runs[2].utcoffset()


class TestTimeOfDay:
    def test_parse_variants(self):
        assert parse_time_of_day("7") == TimeOfDay(7, 0)
        assert parse_time_of_day("07:30") == TimeOfDay(7, 30)
        assert parse_time_of_day("7h30") == TimeOfDay(7, 30)
        assert parse_time_of_day("0730") == TimeOfDay(7, 30)
        assert parse_time_of_day(" 18 : 45 ") == TimeOfDay(18, 45)
        assert parse_time_of_day("21H") == TimeOfDay(21, 0)

    def test_fallback_and_clamp(self):
        assert parse_time_of_day(None) == TimeOfDay(7, 0)
        assert parse_time_of_day("noon") == TimeOfDay(7, 0)
        assert parse_time_of_day("25:00") == TimeOfDay(23, 0)

    def test_format(self):
        assert str(TimeOfDay(7, 5)) == "07:05"

    def test_validity(self):
        assert is_valid_time_of_day("23:59")
        assert not is_valid_time_of_day("24:00")
        assert not is_valid_time_of_day("7:75")
        assert not is_valid_time_of_day("")


class TestTimezone:
    def test_default_used_when_missing(self):
        assert normalize_timezone(None) == HCM
        assert normalize_timezone("  ", default="Europe/Paris") == "Europe/Paris"

    def test_valid_zone_is_stripped(self):
        assert normalize_timezone(" Asia/Seoul ") == "Asia/Seoul"

    def test_invalid_zone_raises(self):
        with pytest.raises(InvalidTimezoneError):
            normalize_timezone("Mars/Olympus")
        with pytest.raises(ValueError):
            normalize_timezone("Not A Zone")
