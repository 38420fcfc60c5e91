from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from expense_api.core.database import get_db
from expense_api.core.deps import get_current_user
from expense_api.schemas import (
    CancelResult,
    CatchUpSummaryOut,
    RecurringTransactionCreate,
    RecurringTransactionOut,
)
from expense_api.services.recurring_transaction_service import RecurringTransactionService
from expense_api import models


router = APIRouter(prefix="/recurring-transactions", tags=["recurring-transactions"])


@router.post("", response_model=RecurringTransactionOut, status_code=201)
def create_recurring_transaction(
    payload: RecurringTransactionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        return RecurringTransactionService(db).create(current_user.id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=list[RecurringTransactionOut])
def list_recurring_transactions(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return RecurringTransactionService(db).list(current_user.id)


@router.delete("/{recurrence_id}", response_model=CancelResult)
def cancel_recurring_transaction(
    recurrence_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    try:
        RecurringTransactionService(db).cancel(current_user.id, recurrence_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}


@router.post("/process", response_model=CatchUpSummaryOut)
def process_recurring_transactions(
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    summary = RecurringTransactionService(db).process_due_occurrences(limit=limit)
    return CatchUpSummaryOut.model_validate(summary, from_attributes=True)
