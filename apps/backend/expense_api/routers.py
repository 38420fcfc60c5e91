from __future__ import annotations

from fastapi import APIRouter

from .api.recurring_budgets import router as recurring_budgets_router
from .api.recurring_rules import router as recurring_rules_router
from .api.recurring_transactions import router as recurring_transactions_router


router = APIRouter()

router.include_router(recurring_rules_router)
router.include_router(recurring_budgets_router)
router.include_router(recurring_transactions_router)
