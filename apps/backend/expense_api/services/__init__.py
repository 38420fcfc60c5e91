"""
Services 패키지

반복 일정 계산, 규칙 매칭, 실행 엔진, 백그라운드 워커를 제공합니다.
"""

from .recurring_budget_service import RecurringBudgetService
from .recurring_engine import RecurringRunSummary, RuleMutation, RunOutcome
from .recurring_matcher import RecurringRuleMatcher, RuleCriteria, ScheduleSnapshot
from .recurring_schedule import InvalidTimezoneError, ScheduleExhaustedError
from .recurring_service import RecurringService
from .recurring_transaction_service import CatchUpSummary, RecurringTransactionService
from .recurring_worker import RecurringWorker, build_workers

__all__ = [
    "CatchUpSummary",
    "InvalidTimezoneError",
    "RecurringBudgetService",
    "RecurringRuleMatcher",
    "RecurringRunSummary",
    "RecurringService",
    "RecurringTransactionService",
    "RecurringWorker",
    "RuleCriteria",
    "RuleMutation",
    "RunOutcome",
    "ScheduleExhaustedError",
    "ScheduleSnapshot",
    "build_workers",
]
