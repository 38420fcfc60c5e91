from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from expense_api.core.database import get_db
from expense_api.core.deps import get_current_user
from expense_api.schemas import (
    RecurringBudgetRuleCreate,
    RecurringBudgetRuleMutationOut,
    RecurringBudgetRuleOut,
    RecurringBudgetRunLogOut,
    RecurringRunSummaryOut,
)
from expense_api.services.recurring_budget_service import RecurringBudgetService
from expense_api.utils.normalization import detect_update_intent
from expense_api import models


router = APIRouter(prefix="/recurring-budget-rules", tags=["recurring-budget-rules"])

NOT_FOUND = "RecurringBudgetRule not found"


@router.post("", response_model=RecurringBudgetRuleMutationOut, status_code=201)
def create_recurring_budget_rule(
    payload: RecurringBudgetRuleCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    prefer_update = payload.prefer_update or detect_update_intent(payload.source_message)
    try:
        mutation = RecurringBudgetService(db).create_rule(current_user.id, payload, prefer_update=prefer_update)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if mutation.action == "updated":
        response.status_code = 200
    return {"rule": mutation.rule, "action": mutation.action}


@router.get("", response_model=list[RecurringBudgetRuleOut])
def list_recurring_budget_rules(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return RecurringBudgetService(db).list_rules(current_user.id)


@router.post("/process", response_model=RecurringRunSummaryOut)
def process_recurring_budget_rules(
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    summary = RecurringBudgetService(db).process_due_rules(limit)
    return RecurringRunSummaryOut.model_validate(summary, from_attributes=True)


@router.get("/{rule_id}", response_model=RecurringBudgetRuleOut)
def get_recurring_budget_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        return RecurringBudgetService(db).get_rule(current_user.id, rule_id)
    except LookupError:
        raise HTTPException(status_code=404, detail=NOT_FOUND)


@router.post("/{rule_id}/disable", response_model=RecurringBudgetRuleOut)
def disable_recurring_budget_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        return RecurringBudgetService(db).disable_rule(current_user.id, rule_id)
    except LookupError:
        raise HTTPException(status_code=404, detail=NOT_FOUND)


@router.get("/{rule_id}/runs", response_model=list[RecurringBudgetRunLogOut])
def list_recurring_budget_rule_runs(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        return RecurringBudgetService(db).list_run_logs(current_user.id, rule_id)
    except LookupError:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
