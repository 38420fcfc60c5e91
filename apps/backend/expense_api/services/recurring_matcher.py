"""
반복 규칙 매칭 서비스

새 반복 요청이 기존 규칙의 수정인지(update) 새 규칙인지(insert) 판단합니다.

매칭 단계 (먼저 일치하는 단계 채택):
1. 메모 정확 일치 (대소문자 무시)
2. 금액 정확 일치
3. 유사도 매칭 (prefer_update인 경우에만)
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from expense_api import models
from expense_api.utils.normalization import extract_note_tokens


FUZZY_NOTE_MATCH_THRESHOLD = 0.55
FUZZY_NOTE_MATCH_MIN_COMMON = 2
MAX_FUZZY_NOTE_CANDIDATES = 10

FREQUENCY_BONUS = 0.1
ANCHOR_BONUS = 0.1
TIME_OF_DAY_BONUS = 0.05


def note_key(note: str) -> str:
    return unicodedata.normalize("NFC", note.strip()).casefold()


@dataclass
class RuleCriteria:
    user_id: int
    currency: str
    amount: Decimal
    category_id: Optional[int] = None
    note: Optional[str] = None
    type: Optional[models.TxnType] = None  # 예산 규칙은 None


@dataclass
class ScheduleSnapshot:
    frequency: models.RecurringFrequency
    day_of_month: Optional[int] = None
    weekday: Optional[int] = None
    time_of_day: Optional[str] = None


def calculate_note_similarity(target_tokens: list[str], candidate_tokens: list[str]) -> tuple[int, float]:
    """Return ``(common, score)`` for two token lists.

    score = 0.6 * common/|target| + 0.2 * common/|candidate| + 0.2 * jaccard
    """
    if not target_tokens or not candidate_tokens:
        return 0, 0.0

    target_set = set(target_tokens)
    candidate_set = set(candidate_tokens)
    common = len(target_set & candidate_set)
    if common == 0:
        return 0, 0.0

    ratio_target = common / len(target_set)
    ratio_candidate = common / len(candidate_set)
    jaccard = common / (len(target_set | candidate_set) or 1)
    score = ratio_target * 0.6 + ratio_candidate * 0.2 + jaccard * 0.2
    return common, score


def schedule_affinity_bonus(candidate, schedule: ScheduleSnapshot | None) -> float:
    if schedule is None:
        return 0.0

    bonus = 0.0
    if candidate.frequency == schedule.frequency:
        bonus += FREQUENCY_BONUS
    if schedule.frequency == models.RecurringFrequency.MONTHLY and candidate.day_of_month == schedule.day_of_month:
        bonus += ANCHOR_BONUS
    if schedule.frequency == models.RecurringFrequency.WEEKLY and candidate.weekday == schedule.weekday:
        bonus += ANCHOR_BONUS
    if candidate.time_of_day and schedule.time_of_day and candidate.time_of_day == schedule.time_of_day:
        bonus += TIME_OF_DAY_BONUS
    return bonus


class RecurringRuleMatcher:
    """Find the stored rule a new recurrence request refers to, if any.

    Works for both ``RecurringRule`` and ``RecurringBudgetRule``; the
    transaction-kind filter only applies when ``criteria.type`` is set.
    """

    def __init__(self, db: Session, model=models.RecurringRule) -> None:
        self.db = db
        self.model = model

    def find_existing(
        self,
        criteria: RuleCriteria,
        *,
        prefer_update: bool = False,
        schedule: ScheduleSnapshot | None = None,
    ):
        note = (criteria.note or "").strip()
        if note:
            match = self._find_by_note(criteria, note)
            if match is not None:
                return match

        match = self._find_by_amount(criteria)
        if match is not None:
            return match

        if not prefer_update:
            return None

        return self._find_approximate(criteria, schedule)

    def _base_query(self, criteria: RuleCriteria):
        model = self.model
        q = self.db.query(model).filter(
            model.user_id == criteria.user_id,
            model.currency == criteria.currency,
        )
        if criteria.category_id is None:
            q = q.filter(model.category_id.is_(None))
        else:
            q = q.filter(model.category_id == criteria.category_id)
        if criteria.type is not None:
            q = q.filter(model.type == criteria.type)
        return q

    def _find_by_note(self, criteria: RuleCriteria, note: str):
        # SQLite lower()는 ASCII만 변환하므로 비교는 Python casefold로 수행
        key = note_key(note)
        candidates = (
            self._base_query(criteria)
            .filter(self.model.note.isnot(None))
            .order_by(self.model.updated_at.desc(), self.model.id.desc())
            .all()
        )
        for candidate in candidates:
            if note_key(candidate.note) == key:
                return candidate
        return None

    def _find_by_amount(self, criteria: RuleCriteria):
        return (
            self._base_query(criteria)
            .filter(self.model.amount == criteria.amount)
            .order_by(self.model.updated_at.desc(), self.model.id.desc())
            .first()
        )

    def _find_approximate(self, criteria: RuleCriteria, schedule: ScheduleSnapshot | None):
        note_tokens = extract_note_tokens(criteria.note)
        if not note_tokens:
            return None

        candidates = (
            self._base_query(criteria)
            .order_by(self.model.updated_at.desc(), self.model.id.desc())
            .limit(MAX_FUZZY_NOTE_CANDIDATES)
            .all()
        )

        best = None
        best_score = 0.0
        for candidate in candidates:
            candidate_tokens = extract_note_tokens(candidate.note)
            if not candidate_tokens:
                continue

            common, score = calculate_note_similarity(note_tokens, candidate_tokens)
            if common < FUZZY_NOTE_MATCH_MIN_COMMON:
                continue

            adjusted = score + schedule_affinity_bonus(candidate, schedule)
            if adjusted > best_score and adjusted >= FUZZY_NOTE_MATCH_THRESHOLD:
                best = candidate
                best_score = adjusted

        return best
