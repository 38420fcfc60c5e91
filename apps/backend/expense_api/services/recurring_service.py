from __future__ import annotations

from datetime import date, datetime

from expense_api import models
from expense_api.services.recurring_engine import RecurringRuleEngine
from expense_api.utils.dates import to_utc_naive


class RecurringService(RecurringRuleEngine):
    """Recurring rules that post a ledger transaction on every occurrence."""

    rule_model = models.RecurringRule
    log_model = models.RecurringRunLog
    artifact_field = "transaction_id"
    label = "recurring rule"

    def _extra_rule_data(self, payload) -> dict:
        return {"type": payload.type}

    def _create_artifact(self, rule: models.RecurringRule, run_at: datetime, occurrence_date: date) -> int:
        txn = models.Transaction(
            user_id=rule.user_id,
            occurred_at=to_utc_naive(run_at),
            type=rule.type,
            amount=rule.amount,
            currency=rule.currency,
            category_id=rule.category_id,
            note=rule.note,
            meta={
                "source": "recurring",
                "recurring_rule_id": rule.id,
                "occurred_date": occurrence_date.isoformat(),
            },
        )
        self.db.add(txn)
        self.db.flush()
        return txn.id
