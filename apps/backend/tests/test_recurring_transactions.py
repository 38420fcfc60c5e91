from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from expense_api import models
from expense_api.schemas import RecurringTransactionCreate
from expense_api.services.recurring_transaction_service import (
    IntervalSchedule,
    RecurringTransactionService,
    compute_next_occurrence,
    is_duplicate_occurrence,
    resolve_initial_occurrence,
)


HCM = ZoneInfo("Asia/Ho_Chi_Minh")


def _payload(**overrides) -> RecurringTransactionCreate:
    data = dict(
        type="EXPENSE",
        amount=30_000,
        note="ca phe",
        frequency="DAILY",
        start_date="2024-01-01T09:00:00",
    )
    data.update(overrides)
    return RecurringTransactionCreate(**data)


class TestOccurrenceMath:
    def test_monthly_end_of_month_sequence(self):
        schedule = IntervalSchedule(frequency=models.RecurringFrequency.MONTHLY, interval=1, day_of_month=31)
        current = resolve_initial_occurrence(datetime(2024, 1, 31, 9, tzinfo=HCM), schedule)
        seen = [current]
        for _ in range(3):
            current = compute_next_occurrence(current, schedule)
            seen.append(current)
        assert [d.date().isoformat() for d in seen] == ["2024-01-31", "2024-02-29", "2024-03-31", "2024-04-30"]

    def test_monthly_anchor_behind_start_moves_to_next_month(self):
        schedule = IntervalSchedule(frequency=models.RecurringFrequency.MONTHLY, day_of_month=15)
        first = resolve_initial_occurrence(datetime(2024, 1, 20, 9, tzinfo=HCM), schedule)
        assert first == datetime(2024, 2, 15, 9, tzinfo=HCM)

    def test_every_two_weeks(self):
        schedule = IntervalSchedule(frequency=models.RecurringFrequency.WEEKLY, interval=2, weekday=3)
        first = resolve_initial_occurrence(datetime(2024, 1, 1, 9, tzinfo=HCM), schedule)
        assert first == datetime(2024, 1, 3, 9, tzinfo=HCM)
        assert compute_next_occurrence(first, schedule) == datetime(2024, 1, 17, 9, tzinfo=HCM)

    def test_every_three_days(self):
        schedule = IntervalSchedule(frequency=models.RecurringFrequency.DAILY, interval=3)
        start = datetime(2024, 1, 30, 9, tzinfo=HCM)
        assert resolve_initial_occurrence(start, schedule) == start
        assert compute_next_occurrence(start, schedule) == datetime(2024, 2, 2, 9, tzinfo=HCM)


def test_create_defaults_and_first_occurrence(db_session, user):
    svc = RecurringTransactionService(db_session)
    record = svc.create(user.id, _payload(frequency="WEEKLY"))

    # 2024-01-01 is a Monday -> weekday defaults to Monday (1)
    assert record.weekday == 1
    assert record.timezone == "Asia/Ho_Chi_Minh"
    assert record.currency == "VND"
    assert record.start_date == datetime(2024, 1, 1, 2, 0)
    assert record.next_run_at == record.start_date
    assert record.is_active is True


def test_create_rejects_invalid_windows(db_session, user):
    svc = RecurringTransactionService(db_session)
    with pytest.raises(ValueError):
        svc.create(user.id, _payload(end_date="2023-12-31T00:00:00"))
    with pytest.raises(ValueError):
        svc.create(user.id, _payload(frequency="WEEKLY", weekday=5, end_date="2024-01-03T00:00:00"))
    assert db_session.query(models.RecurringTransaction).count() == 0


def test_yearly_interval_recurrence_is_rejected():
    with pytest.raises(ValidationError):
        _payload(frequency="YEARLY")


def test_catch_up_is_capped_per_tick(db_session, user):
    svc = RecurringTransactionService(db_session)
    record = svc.create(user.id, _payload())
    now = datetime(2024, 2, 9, 3, 0, tzinfo=timezone.utc)

    first = svc.process_due_occurrences(now=now)
    assert first.created == 24
    db_session.refresh(record)
    assert record.last_run_at == datetime(2024, 1, 24, 2, 0)
    assert record.next_run_at == datetime(2024, 1, 25, 2, 0)

    second = svc.process_due_occurrences(now=now)
    assert second.created == 16
    assert db_session.query(models.Transaction).count() == 40
    db_session.refresh(record)
    assert record.next_run_at == datetime(2024, 2, 10, 2, 0)

    assert svc.process_due_occurrences(now=now).processed == 0


def test_duplicate_occurrence_is_swallowed(db_session, user):
    svc = RecurringTransactionService(db_session)
    record = svc.create(user.id, _payload())
    db_session.add(
        models.Transaction(
            user_id=user.id,
            occurred_at=datetime(2024, 1, 1, 2, 0),
            type=models.TxnType.EXPENSE,
            amount=30_000,
            currency="VND",
            recurring_transaction_id=record.id,
            scheduled_for=datetime(2024, 1, 1, 2, 0),
        )
    )
    db_session.commit()

    summary = svc.process_due_occurrences(now=datetime(2024, 1, 3, 3, 0, tzinfo=timezone.utc))

    assert summary.duplicates == 1
    assert summary.created == 2
    assert summary.failed == 0
    assert db_session.query(models.Transaction).count() == 3
    db_session.refresh(record)
    assert record.next_run_at == datetime(2024, 1, 4, 2, 0)


def test_non_unique_integrity_error_is_a_failure(db_session, user, monkeypatch):
    svc = RecurringTransactionService(db_session)
    record = svc.create(user.id, _payload())

    def _missing_occurred_at(self, recurrence, scheduled_for):
        return models.Transaction(
            user_id=recurrence.user_id,
            occurred_at=None,
            type=recurrence.type,
            amount=recurrence.amount,
            currency=recurrence.currency,
            recurring_transaction_id=recurrence.id,
            scheduled_for=scheduled_for,
        )

    monkeypatch.setattr(RecurringTransactionService, "_build_occurrence", _missing_occurred_at)
    summary = svc.process_due_occurrences(now=datetime(2024, 1, 3, 3, 0, tzinfo=timezone.utc))

    assert summary.failed == 1
    assert summary.duplicates == 0
    assert summary.created == 0
    assert db_session.query(models.Transaction).count() == 0
    db_session.refresh(record)
    assert record.next_run_at == datetime(2024, 1, 1, 2, 0)
    assert record.last_run_at is None


class _DBError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.mark.parametrize(
    "orig, expected",
    [
        (_DBError("UNIQUE constraint failed: transaction.user_id, transaction.recurring_transaction_id, transaction.scheduled_for"), True),
        (_DBError("NOT NULL constraint failed: transaction.occurred_at"), False),
        (_DBError("FOREIGN KEY constraint failed"), False),
        (_DBError("duplicate key value violates unique constraint", sqlstate="23505"), True),
        (_DBError("insert or update violates foreign key constraint", sqlstate="23503"), False),
    ],
)
def test_only_unique_violations_count_as_duplicates(orig, expected):
    assert is_duplicate_occurrence(IntegrityError("INSERT", {}, orig)) is expected


def test_recurrence_retires_at_end_date(db_session, user):
    svc = RecurringTransactionService(db_session)
    record = svc.create(
        user.id,
        _payload(frequency="WEEKLY", weekday=3, end_date="2024-01-20T00:00:00"),
    )

    summary = svc.process_due_occurrences(now=datetime(2024, 2, 1, tzinfo=timezone.utc))

    assert summary.created == 3
    assert summary.retired == 1
    db_session.refresh(record)
    assert record.is_active is False
    assert record.next_run_at is None
    assert record.last_run_at == datetime(2024, 1, 17, 2, 0)


def test_one_failing_recurrence_does_not_stop_the_batch(db_session, user, monkeypatch):
    svc = RecurringTransactionService(db_session)
    broken = svc.create(user.id, _payload(note="broken"))
    healthy = svc.create(user.id, _payload(note="healthy"))

    real_create_occurrence = RecurringTransactionService._create_occurrence

    def _flaky(self, recurrence, occurrence):
        if recurrence.note == "broken":
            raise RuntimeError("boom")
        return real_create_occurrence(self, recurrence, occurrence)

    monkeypatch.setattr(RecurringTransactionService, "_create_occurrence", _flaky)
    summary = svc.process_due_occurrences(now=datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc))

    assert summary.failed == 1
    assert summary.created == 1
    db_session.refresh(broken)
    db_session.refresh(healthy)
    assert broken.next_run_at == datetime(2024, 1, 1, 2, 0)
    assert healthy.next_run_at == datetime(2024, 1, 2, 2, 0)


def test_list_and_cancel(db_session, user):
    svc = RecurringTransactionService(db_session)
    a = svc.create(user.id, _payload(note="a"))
    b = svc.create(user.id, _payload(note="b"))

    assert [r.id for r in svc.list(user.id)] == [b.id, a.id]
    assert svc.cancel(user.id, a.id) is True
    db_session.refresh(a)
    assert a.is_active is False and a.next_run_at is None

    with pytest.raises(LookupError):
        svc.cancel(user.id, 9999)
