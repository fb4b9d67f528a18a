"""Background interval jobs run on the app's event loop."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from homeledger.budget import run_history_for_all_users
from homeledger.recurring import process_recurring_transactions

logger = logging.getLogger(__name__)

BUDGET_HISTORY_INTERVAL = 30 * 60
BUDGET_HISTORY_INITIAL_DELAY = 1
RECURRING_INTERVAL = 60 * 60
RECURRING_INITIAL_DELAY = 2


class IntervalJob:
    """Runs a blocking callable in a worker thread every interval_seconds."""

    def __init__(self, name: str, func: Callable[[], object], interval_seconds: float, initial_delay: float = 0):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.initial_delay = initial_delay
        self.runs = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self._task:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run_loop())
        logger.info("started %s (every %ss)", self.name, self.interval_seconds)

    async def stop(self):
        self._stopping = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("stopped %s", self.name)

    async def run_once(self):
        try:
            result = await asyncio.to_thread(self.func)
            self.runs += 1
            logger.debug("%s finished: %r", self.name, result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("%s failed: %s", self.name, e)

    async def _run_loop(self):
        try:
            await asyncio.sleep(self.initial_delay)
            while not self._stopping:
                await self.run_once()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            pass


class BudgetHistoryScheduler(IntervalJob):
    def __init__(self, interval_seconds: float = BUDGET_HISTORY_INTERVAL, initial_delay: float = BUDGET_HISTORY_INITIAL_DELAY):
        super().__init__("budget-history", run_history_for_all_users, interval_seconds, initial_delay)


class RecurringTransactionsScheduler(IntervalJob):
    def __init__(self, interval_seconds: float = RECURRING_INTERVAL, initial_delay: float = RECURRING_INITIAL_DELAY):
        super().__init__("recurring-transactions", process_recurring_transactions, interval_seconds, initial_delay)


def default_jobs() -> List[IntervalJob]:
    return [BudgetHistoryScheduler(), RecurringTransactionsScheduler()]
