"""
반복 규칙 실행 엔진

책임:
- 규칙 생성/수정 (매칭 → 일정 계산 → 저장)
- 만기 규칙 처리 (occurrence 당 정확히 한 번 artifact 생성)
- 실패 기록 및 다음 tick 재시도

구체 서비스(거래/예산)는 `_create_artifact`만 구현합니다.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from expense_api import models
from expense_api.core.config import settings
from expense_api.services.recurring_matcher import (
    RecurringRuleMatcher,
    RuleCriteria,
    ScheduleSnapshot,
)
from expense_api.services.recurring_schedule import (
    ScheduleContext,
    ScheduleExhaustedError,
    build_end,
    build_schedule_context,
    build_start,
    calculate_next_run,
    normalize_time_of_day,
    normalize_timezone,
)
from expense_api.utils.dates import from_utc_naive, to_utc_naive, utcnow


class RunOutcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    RETIRED = "retired"
    FAILED = "failed"


@dataclass
class RuleMutation:
    rule: Any
    action: str  # "created" | "updated"


@dataclass
class RecurringRunSummary:
    processed: int = 0
    created: int = 0
    skipped: int = 0
    retired: int = 0
    failed: int = 0

    def record(self, outcome: RunOutcome) -> None:
        self.processed += 1
        if outcome == RunOutcome.CREATED:
            self.created += 1
        elif outcome == RunOutcome.SKIPPED:
            self.skipped += 1
        elif outcome == RunOutcome.RETIRED:
            self.retired += 1
        else:
            self.failed += 1


class RecurringRuleEngine:
    """Shared create/tick logic for anchored recurring rules.

    Subclasses set ``rule_model``/``log_model``, the run-log column that
    references the artifact, and implement ``_create_artifact``.
    """

    rule_model: Any = None
    log_model: Any = None
    artifact_field: str = ""
    label: str = "recurring rule"

    def __init__(self, db: Session) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_rule(
        self,
        user_id: int,
        payload,
        *,
        prefer_update: bool = False,
        now: Optional[datetime] = None,
    ) -> RuleMutation:
        data = self._prepare_rule_data(user_id, payload, now=now)

        criteria = RuleCriteria(
            user_id=user_id,
            currency=data["currency"],
            amount=data["amount"],
            category_id=data["category_id"],
            note=data["note"],
            type=data.get("type"),
        )
        schedule = ScheduleSnapshot(
            frequency=data["frequency"],
            day_of_month=data["day_of_month"],
            weekday=data["weekday"],
            time_of_day=data["time_of_day"],
        )
        matcher = RecurringRuleMatcher(self.db, self.rule_model)
        existing = matcher.find_existing(criteria, prefer_update=prefer_update, schedule=schedule)

        if existing is not None:
            for key, value in data.items():
                setattr(existing, key, value)
            existing.enabled = True
            self.db.commit()
            self.db.refresh(existing)
            logger.info(
                "Updated {} id={} user={} next_run_at={}",
                self.label,
                existing.id,
                user_id,
                existing.next_run_at,
            )
            return RuleMutation(rule=existing, action="updated")

        rule = self.rule_model(user_id=user_id, enabled=True, **data)
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info(
            "Created {} id={} user={} next_run_at={}",
            self.label,
            rule.id,
            user_id,
            rule.next_run_at,
        )
        return RuleMutation(rule=rule, action="created")

    def _prepare_rule_data(self, user_id: int, payload, *, now: Optional[datetime] = None) -> dict[str, Any]:
        profile = (
            self.db.query(models.UserProfile)
            .filter(models.UserProfile.user_id == user_id)
            .first()
        )
        tz_name = normalize_timezone(payload.timezone, default=profile.timezone if profile else None)
        currency = (
            payload.currency
            or (profile.base_currency if profile else None)
            or settings.DEFAULT_CURRENCY
        ).upper()

        zone = ZoneInfo(tz_name)
        tod = normalize_time_of_day(payload.time_of_day)
        start = build_start(payload.start_date, zone, tod)
        end = build_end(payload.end_date, zone) if payload.end_date else None

        context = ScheduleContext(
            frequency=payload.frequency,
            hour=tod.hour,
            minute=tod.minute,
            timezone=tz_name,
            start=start,
            end=end,
            day_of_month=payload.day_of_month,
            weekday=payload.weekday,
        )
        next_run = calculate_next_run(context, now or utcnow())
        if next_run is None:
            raise ScheduleExhaustedError("Recurring schedule has no occurrence inside its window")

        note = (payload.note or "").strip() or None
        data: dict[str, Any] = {
            "frequency": payload.frequency,
            "day_of_month": payload.day_of_month,
            "weekday": payload.weekday,
            "time_of_day": str(tod),
            "timezone": tz_name,
            "start_date": to_utc_naive(start),
            "end_date": to_utc_naive(end) if end else None,
            "amount": Decimal(str(payload.amount)),
            "currency": currency,
            "category_id": payload.category_id,
            "note": note,
            "next_run_at": to_utc_naive(next_run),
        }
        data.update(self._extra_rule_data(payload))
        return data

    def _extra_rule_data(self, payload) -> dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_rules(self, user_id: int) -> list[Any]:
        model = self.rule_model
        return (
            self.db.query(model)
            .filter(model.user_id == user_id)
            .order_by(model.created_at.desc(), model.id.desc())
            .all()
        )

    def get_rule(self, user_id: int, rule_id: int):
        model = self.rule_model
        rule = (
            self.db.query(model)
            .filter(model.id == rule_id, model.user_id == user_id)
            .first()
        )
        if rule is None:
            raise LookupError(f"{model.__name__} not found")
        return rule

    def disable_rule(self, user_id: int, rule_id: int):
        rule = self.get_rule(user_id, rule_id)
        self._retire(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info("Disabled {} id={}", self.label, rule.id)
        return rule

    def list_run_logs(self, user_id: int, rule_id: int) -> list[Any]:
        rule = self.get_rule(user_id, rule_id)
        log = self.log_model
        return (
            self.db.query(log)
            .filter(log.rule_id == rule.id)
            .order_by(log.occurred_date.desc(), log.id.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Tick processing
    # ------------------------------------------------------------------
    def process_due_rules(self, limit: Optional[int] = None, *, now: Optional[datetime] = None) -> RecurringRunSummary:
        current = to_utc_naive(now or utcnow())
        model = self.rule_model
        rules = (
            self.db.query(model)
            .filter(
                model.enabled.is_(True),
                model.next_run_at.isnot(None),
                model.next_run_at <= current,
            )
            .order_by(model.next_run_at.asc(), model.id.asc())
            .limit(limit or settings.RECURRING_BATCH_LIMIT)
            .all()
        )

        summary = RecurringRunSummary()
        for rule in rules:
            summary.record(self.execute_rule(rule))

        if summary.processed:
            logger.info(
                "Processed {} {}(s): created={} skipped={} retired={} failed={}",
                summary.processed,
                self.label,
                summary.created,
                summary.skipped,
                summary.retired,
                summary.failed,
            )
        return summary

    def execute_rule(self, rule) -> RunOutcome:
        """Materialize the occurrence at ``rule.next_run_at`` and advance the rule."""
        rule_id = rule.id
        occurrence_date: Optional[date] = None
        try:
            context = build_schedule_context(rule)
            current_run = from_utc_naive(rule.next_run_at)
            occurrence_date = current_run.astimezone(context.zone).date()

            if context.end is not None and current_run > context.end:
                self._retire(rule)
                self.db.commit()
                logger.info("Retired {} id={} (past end date)", self.label, rule_id)
                return RunOutcome.RETIRED

            next_run = calculate_next_run(context, current_run + timedelta(minutes=1))

            run_log = self._find_run_log(rule_id, occurrence_date)
            if run_log is not None and run_log.status == models.RunStatus.SUCCESS:
                self._advance(rule, current_run, next_run)
                self.db.commit()
                logger.debug("{} id={} already ran for {}", self.label, rule_id, occurrence_date)
                return RunOutcome.SKIPPED

            artifact_id = self._create_artifact(rule, current_run, occurrence_date)
            if run_log is None:
                run_log = self.log_model(rule_id=rule_id, occurred_date=occurrence_date)
                self.db.add(run_log)
            run_log.status = models.RunStatus.SUCCESS
            run_log.message = None
            setattr(run_log, self.artifact_field, artifact_id)

            self._advance(rule, current_run, next_run)
            self.db.commit()
            if next_run is None:
                logger.info("{} id={} finished its schedule", self.label, rule_id)
            return RunOutcome.CREATED
        except Exception as exc:
            self.db.rollback()
            logger.exception("Failed to execute {} id={} for {}", self.label, rule_id, occurrence_date)
            if occurrence_date is not None:
                self._record_failure(rule_id, occurrence_date, str(exc) or exc.__class__.__name__)
            return RunOutcome.FAILED

    def _create_artifact(self, rule, run_at: datetime, occurrence_date: date) -> int:
        raise NotImplementedError

    def _find_run_log(self, rule_id: int, occurrence_date: date):
        log = self.log_model
        return (
            self.db.query(log)
            .filter(log.rule_id == rule_id, log.occurred_date == occurrence_date)
            .first()
        )

    def _advance(self, rule, current_run: datetime, next_run: Optional[datetime]) -> None:
        rule.last_run_at = to_utc_naive(current_run)
        if next_run is None:
            self._retire(rule)
        else:
            rule.next_run_at = to_utc_naive(next_run)

    def _retire(self, rule) -> None:
        rule.enabled = False
        rule.next_run_at = None

    def _record_failure(self, rule_id: int, occurrence_date: date, message: str) -> None:
        # SUCCESS 로그는 절대 ERROR로 되돌리지 않음
        try:
            run_log = self._find_run_log(rule_id, occurrence_date)
            if run_log is None:
                self.db.add(
                    self.log_model(
                        rule_id=rule_id,
                        occurred_date=occurrence_date,
                        status=models.RunStatus.ERROR,
                        message=message,
                    )
                )
            elif run_log.status == models.RunStatus.ERROR:
                run_log.message = message
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to record run failure for {} id={}", self.label, rule_id)
