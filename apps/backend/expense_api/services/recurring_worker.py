"""
반복 작업 백그라운드 워커

스케줄러 종류(거래 규칙 / 예산 규칙 / 주기 거래)마다 asyncio 타이머 루프 하나를 둡니다.
- 시작 시 1회 즉시 실행
- 이전 tick이 아직 실행 중이면 이번 tick은 건너뜀
- DB 작업은 스레드에서 tick마다 새 세션으로 실행
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Callable

from loguru import logger

from expense_api.core.config import settings
from expense_api.core.database import session_scope
from expense_api.services.recurring_budget_service import RecurringBudgetService
from expense_api.services.recurring_service import RecurringService
from expense_api.services.recurring_transaction_service import RecurringTransactionService


class RecurringWorker:
    def __init__(
        self,
        name: str,
        job: Callable[[], Any],
        interval_seconds: float,
        *,
        run_on_start: bool = True,
    ) -> None:
        self.name = name
        self.job = job
        self.interval_seconds = max(0.01, float(interval_seconds))
        self.run_on_start = run_on_start
        self.running = False
        self._loop_task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def started(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.started:
            return
        self._loop_task = asyncio.create_task(self._run(), name=f"recurring-worker:{self.name}")
        logger.info("{} worker started (every {}s)", self.name, self.interval_seconds)

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        # 진행 중인 tick은 취소하지 않고 끝날 때까지 대기
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)
        logger.info("{} worker stopped", self.name)

    async def tick(self) -> bool:
        """Run the job once. Returns False when skipped because a tick is in flight."""
        if self.running:
            logger.debug("{} worker is still running; skipping tick", self.name)
            return False

        self.running = True
        try:
            result = await asyncio.to_thread(self.job)
            logger.debug("{} tick finished: {}", self.name, result)
        except Exception:
            logger.exception("{} tick failed", self.name)
        finally:
            self.running = False
        return True

    def _fire(self) -> None:
        task = asyncio.create_task(self.tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _run(self) -> None:
        if self.run_on_start:
            self._fire()
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._fire()


def run_recurring_rules():
    with session_scope() as db:
        return RecurringService(db).process_due_rules()


def run_recurring_budget_rules():
    with session_scope() as db:
        return RecurringBudgetService(db).process_due_rules()


def run_recurring_transactions():
    with session_scope() as db:
        return RecurringTransactionService(db).process_due_occurrences()


def build_workers() -> list[RecurringWorker]:
    return [
        RecurringWorker("recurring-rules", run_recurring_rules, settings.RECURRING_TICK_SECONDS),
        RecurringWorker("recurring-budget-rules", run_recurring_budget_rules, settings.RECURRING_BUDGET_TICK_SECONDS),
        RecurringWorker(
            "recurring-transactions",
            run_recurring_transactions,
            settings.RECURRING_TRANSACTIONS_TICK_SECONDS,
        ),
    ]
