"""
Points Scheduler.

Every interval (and once at startup) walks all users of every chain and
publishes calculation tasks for the current window plus any missed
windows since the user's last credit.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from tracker.config.settings import PointsSettings
from tracker.services.ledger import Ledger
from tracker.services.points.planner import plan_user
from tracker.services.points.task import PointsTask
from tracker.utils.datetime_utils import utc_now
from tracker.utils.exceptions import TransientError


class TaskPublisher(Protocol):
    """Write side of the points task bus."""

    async def publish(self, task: PointsTask) -> None: ...


class PointsScheduler:
    """Periodic producer of points tasks."""

    JOB_ID = "points_scheduler"

    def __init__(
        self,
        ledger: Ledger,
        bus: TaskPublisher,
        chain_names: list[str],
        settings: PointsSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            ledger: Event ledger
            bus: Task publisher
            chain_names: Chains to schedule, in configured order
            settings: Points settings
            clock: Time source
        """
        self.ledger = ledger
        self.bus = bus
        self.chain_names = chain_names
        self.settings = settings
        self.clock = clock
        self.interval = timedelta(minutes=settings.interval)
        self.lookback = timedelta(hours=settings.first_calc_lookback_hours)
        self._scheduler: AsyncIOScheduler | None = None

    async def tick(self) -> int:
        """
        Run one scheduling pass over every chain.

        A chain whose pass fails is logged and picked up again next tick;
        replanning is safe because the worker is idempotent.

        Returns:
            Number of tasks published
        """
        now = self.clock()
        published = 0
        for chain_name in self.chain_names:
            try:
                published += await self.schedule_chain(chain_name, now)
            except TransientError as e:
                logger.warning(f"[Scheduler] {chain_name}: tick aborted: {e}")
        logger.info(f"[Scheduler] Tick at {now.isoformat()}: {published} task(s) published")
        return published

    async def schedule_chain(self, chain_name: str, now: datetime) -> int:
        """Publish tasks for every user of one chain."""
        published = 0
        users = 0
        async for user in self.ledger.iter_users(chain_name):
            users += 1
            published += await self.schedule_user(chain_name, user, now)
        logger.debug(f"[Scheduler] {chain_name}: {users} user(s), {published} task(s)")
        return published

    async def schedule_user(self, chain_name: str, user: str, now: datetime) -> int:
        """
        Publish the backfill and current windows of one user.

        Backfill slices already credited are skipped; the current window
        is published unconditionally and gated by the worker.
        """
        last_calc = await self.ledger.get_last_calculated_at(chain_name, user)
        if last_calc is None:
            last_calc = now - self.lookback

        plan = plan_user(last_calc, now, self.interval)
        published = 0
        for period in plan.backfill:
            if await self.ledger.has_points_calculated(
                chain_name, user, period.start, period.end
            ):
                logger.debug(f"[Scheduler] {chain_name}/{user} {period} already credited")
                continue
            await self.bus.publish(PointsTask(chain_name, user, period.start, period.end))
            published += 1

        if plan.current is not None:
            await self.bus.publish(
                PointsTask(chain_name, user, plan.current.start, plan.current.end)
            )
            published += 1
        return published

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick on an APScheduler interval until stop_event is set."""
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(minutes=self.settings.interval),
            id=self.JOB_ID,
            name="Publish points calculation tasks",
            next_run_time=utc_now(),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"[Scheduler] Started, interval {self.settings.interval} min")
        try:
            await stop_event.wait()
        finally:
            scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("[Scheduler] Stopped")
