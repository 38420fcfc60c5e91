from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from expense_api.core.database import get_db
from expense_api.core.deps import get_current_user
from expense_api.schemas import (
    RecurringRuleCreate,
    RecurringRuleMutationOut,
    RecurringRuleOut,
    RecurringRunLogOut,
    RecurringRunSummaryOut,
)
from expense_api.services.recurring_service import RecurringService
from expense_api.utils.normalization import detect_update_intent
from expense_api import models


router = APIRouter(prefix="/recurring-rules", tags=["recurring-rules"])


@router.post("", response_model=RecurringRuleMutationOut, status_code=201)
def create_recurring_rule(
    payload: RecurringRuleCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    prefer_update = payload.prefer_update or detect_update_intent(payload.source_message)
    try:
        mutation = RecurringService(db).create_rule(current_user.id, payload, prefer_update=prefer_update)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    # 기존 규칙을 갱신한 경우 201 대신 200
    if mutation.action == "updated":
        response.status_code = 200
    return {"rule": mutation.rule, "action": mutation.action}


@router.get("", response_model=list[RecurringRuleOut])
def list_recurring_rules(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return RecurringService(db).list_rules(current_user.id)


@router.post("/process", response_model=RecurringRunSummaryOut)
def process_recurring_rules(
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    summary = RecurringService(db).process_due_rules(limit)
    return RecurringRunSummaryOut.model_validate(summary, from_attributes=True)


@router.get("/{rule_id}", response_model=RecurringRuleOut)
def get_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        return RecurringService(db).get_rule(current_user.id, rule_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="RecurringRule not found")


@router.post("/{rule_id}/disable", response_model=RecurringRuleOut)
def disable_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        return RecurringService(db).disable_rule(current_user.id, rule_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="RecurringRule not found")


@router.get("/{rule_id}/runs", response_model=list[RecurringRunLogOut])
def list_recurring_rule_runs(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        return RecurringService(db).list_run_logs(current_user.id, rule_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="RecurringRule not found")
