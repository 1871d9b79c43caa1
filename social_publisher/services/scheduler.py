# social_publisher/services/scheduler.py
"""
Scheduler worker.

LOGIC:
- Every tick, find scheduled post groups whose time has come
- Claim each one with a compare-and-set scheduled -> processing
- Hand only the groups this instance claimed to the publish orchestrator

The claim lives in the database, not in memory, so any number of scheduler
instances can run side by side without publishing a group twice.
"""
import asyncio
import os
import uuid
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from social_publisher.infrastructure.post_store import PostGroupStore
from social_publisher.models.post import PostGroupStatus, as_utc, utcnow

logger = structlog.get_logger(__name__)

SCHEDULER_INTERVAL_SECONDS = float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60"))
SCHEDULER_BATCH_SIZE = int(os.getenv("SCHEDULER_BATCH_SIZE", "100"))
SCHEDULER_MAX_CONCURRENT_GROUPS = int(os.getenv("SCHEDULER_MAX_CONCURRENT_GROUPS", "4"))


class Scheduler:
    def __init__(
        self,
        session_factory: Callable,
        orchestrator,
        interval_seconds: float = SCHEDULER_INTERVAL_SECONDS,
        batch_size: int = SCHEDULER_BATCH_SIZE,
        max_concurrent_groups: int = SCHEDULER_MAX_CONCURRENT_GROUPS,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.interval = interval_seconds
        self.batch_size = batch_size
        self.max_concurrent_groups = max(1, max_concurrent_groups)
        self.running = False
        self._stop = asyncio.Event()

    async def run_forever(self) -> None:
        """
        Tick until stop() is called. A failing tick is logged and the loop goes on.
        """
        self.running = True
        self._stop.clear()
        logger.info("scheduler_started", interval=self.interval)

        while self.running:
            try:
                await self.tick()
            except Exception as exc:
                logger.exception("scheduler_tick_failed", error=str(exc))

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("scheduler_stopped")

    def stop(self) -> None:
        self.running = False
        self._stop.set()

    async def tick(self, now: Optional[datetime] = None) -> List[uuid.UUID]:
        now = as_utc(now) or utcnow()
        async with self.session_factory() as session:
            due = await PostGroupStore(session).due_group_ids(now, self.batch_size)

        if not due:
            logger.debug("scheduler_nothing_due")
            return []

        logger.info("scheduler_due_groups", count=len(due))
        claimed = [group_id for group_id in due if await self._claim(group_id)]
        if claimed:
            await self._dispatch(claimed)
        return claimed

    async def _claim(self, group_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            won = await PostGroupStore(session).compare_and_set_status(
                group_id, PostGroupStatus.scheduled, PostGroupStatus.processing
            )
            await session.commit()

        if won:
            logger.info("post_group_claimed", post_group_id=str(group_id))
        else:
            logger.debug("post_group_claim_lost", post_group_id=str(group_id))
        return won

    async def _dispatch(self, group_ids: List[uuid.UUID]) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrent_groups)

        async def run(group_id: uuid.UUID) -> None:
            async with semaphore:
                try:
                    await self.orchestrator.publish_group(group_id)
                except Exception as exc:
                    logger.exception("post_group_publish_crashed", post_group_id=str(group_id), error=str(exc))

        await asyncio.gather(*(run(group_id) for group_id in group_ids))
