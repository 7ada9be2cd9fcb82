"""Periodic scheduler that fans due subscriptions out to the orchestrator"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from autopay_engine.domain.models import Subscription
from autopay_engine.domain.ports import SubscriptionStore
from autopay_engine.infrastructure.observability.metrics import scheduler_tick_counter
from autopay_engine.services.orchestrator import ExecutionOrchestrator, ExecutionOutcome
from autopay_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        store: SubscriptionStore,
        orchestrator: ExecutionOrchestrator,
        max_parallel: int = 8,
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._orchestrator = orchestrator
        self._max_parallel = max_parallel
        self._interval = interval_seconds
        self._clock = clock

    async def tick(self, now: Optional[datetime] = None) -> List[ExecutionOutcome]:
        """Execute every due subscription concurrently, bounded by max_parallel"""
        now = now or self._clock()
        scheduler_tick_counter.inc()
        due = await self._store.list_due(now)
        if not due:
            return []

        logger.info("Scheduler tick: %d subscription(s) due", len(due))
        semaphore = asyncio.Semaphore(self._max_parallel)

        async def run_one(subscription: Subscription) -> Optional[ExecutionOutcome]:
            async with semaphore:
                return await self._orchestrator.execute(subscription.id, now)

        results = await asyncio.gather(*(run_one(subscription) for subscription in due), return_exceptions=True)

        outcomes = []
        for subscription, result in zip(due, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Execution of subscription %s crashed: %s",
                    subscription.id,
                    result,
                    exc_info=result,
                )
            elif result is not None:
                outcomes.append(result)
        return outcomes

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Scheduler tick failed")

    async def run_forever(self, stop: asyncio.Event) -> None:
        """
        Launch a tick every interval until `stop` is set.

        Ticks are not awaited before the next one starts; a subscription
        still running from an earlier tick is skipped by the orchestrator lock.
        """
        in_flight: Set[asyncio.Task] = set()
        logger.info("Scheduler started, interval %ss", self._interval)

        while not stop.is_set():
            task = asyncio.create_task(self._guarded_tick())
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue

        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        logger.info("Scheduler stopped")
