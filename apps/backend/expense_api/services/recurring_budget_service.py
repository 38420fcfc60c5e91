"""
반복 예산 규칙 서비스

occurrence마다 해당 월의 예산을 upsert 합니다.
빈도(DAILY/WEEKLY/MONTHLY/YEARLY)와 무관하게 occurrence 날짜가 속한 달이 키입니다.
"""

from __future__ import annotations

from datetime import date, datetime

from expense_api import models
from expense_api.services.recurring_engine import RecurringRuleEngine
from expense_api.utils.dates import month_bounds


def resolve_budget_period(occurrence_date: date) -> tuple[models.BudgetPeriod, date, date]:
    start, end = month_bounds(occurrence_date)
    return models.BudgetPeriod.MONTH, start, end


class RecurringBudgetService(RecurringRuleEngine):
    rule_model = models.RecurringBudgetRule
    log_model = models.RecurringBudgetRunLog
    artifact_field = "budget_id"
    label = "recurring budget rule"

    def _create_artifact(self, rule: models.RecurringBudgetRule, run_at: datetime, occurrence_date: date) -> int:
        period, period_start, period_end = resolve_budget_period(occurrence_date)

        q = self.db.query(models.Budget).filter(
            models.Budget.user_id == rule.user_id,
            models.Budget.period_start == period_start,
            models.Budget.period_end == period_end,
        )
        if rule.category_id is None:
            q = q.filter(models.Budget.category_id.is_(None))
        else:
            q = q.filter(models.Budget.category_id == rule.category_id)
        budget = q.first()

        if budget is None:
            budget = models.Budget(
                user_id=rule.user_id,
                period=period,
                period_start=period_start,
                period_end=period_end,
                category_id=rule.category_id,
                amount=rule.amount,
                currency=rule.currency,
            )
            self.db.add(budget)
        else:
            budget.period = period
            budget.amount = rule.amount
            budget.currency = rule.currency
        self.db.flush()
        return budget.id
