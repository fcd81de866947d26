"""
Backfill Service.

Operator tools that publish points tasks on the regular bus: an explicit
window for every user, a lag report, and automatic gap repair.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger

from tracker.config.constants import BACKFILL_MANUAL_SLICE
from tracker.config.settings import PointsSettings
from tracker.services.ledger import Ledger
from tracker.services.points.planner import split_time_range
from tracker.services.points.scheduler import TaskPublisher
from tracker.services.points.task import PointsTask
from tracker.utils.datetime_utils import ensure_utc, format_rfc3339, utc_now


@dataclass(frozen=True)
class LaggingUser:
    """User whose points are behind."""

    user_address: str
    last_calculated_at: datetime | None
    lag_hours: float

    def to_dict(self) -> dict:
        return {
            "user_address": self.user_address,
            "last_calculated_at": (
                format_rfc3339(self.last_calculated_at) if self.last_calculated_at else None
            ),
            "lag_hours": round(self.lag_hours, 2),
        }


@dataclass
class BackfillResult:
    """Outcome of a publishing run."""

    chain_name: str
    users: int = 0
    published: int = 0
    skipped: int = 0
    lagging: list[LaggingUser] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "chain_name": self.chain_name,
            "users": self.users,
            "published": self.published,
            "skipped": self.skipped,
            "lagging": [user.to_dict() for user in self.lagging],
        }


class BackfillService:
    """Backfill and lag inspection."""

    def __init__(
        self,
        ledger: Ledger,
        bus: TaskPublisher | None,
        settings: PointsSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize service.

        Args:
            ledger: Event ledger
            bus: Task publisher (not needed for `check`)
            settings: Points settings
            clock: Time source
        """
        self.ledger = ledger
        self.bus = bus
        self.settings = settings
        self.clock = clock
        self.slice = timedelta(minutes=BACKFILL_MANUAL_SLICE)
        self.lookback = timedelta(hours=settings.first_calc_lookback_hours)
        self.threshold = timedelta(hours=settings.lag_threshold_hours)

    async def backfill_points(
        self, chain_name: str, start: datetime, end: datetime
    ) -> BackfillResult:
        """
        Publish hourly tasks over [start, end) for every user of a chain.

        Slices already credited are skipped.

        Raises:
            ValueError: If end is not after start
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if end <= start:
            raise ValueError("end must be after start")

        result = BackfillResult(chain_name)
        periods = split_time_range(start, end, self.slice)
        logger.info(
            f"[Backfill] {chain_name}: {len(periods)} slice(s) per user over "
            f"[{format_rfc3339(start)}, {format_rfc3339(end)})"
        )
        async for user in self.ledger.iter_users(chain_name):
            result.users += 1
            for period in periods:
                if await self.ledger.has_points_calculated(
                    chain_name, user, period.start, period.end
                ):
                    result.skipped += 1
                    continue
                await self._publish(PointsTask(chain_name, user, period.start, period.end))
                result.published += 1

        logger.info(
            f"[Backfill] {chain_name}: {result.published} task(s) published, "
            f"{result.skipped} slice(s) already credited, {result.users} user(s)"
        )
        return result

    async def check(self, chain_name: str) -> BackfillResult:
        """
        Report users whose last credit is older than the lag threshold.

        Users never credited count as credited one lookback ago.
        """
        now = self.clock()
        result = BackfillResult(chain_name)
        async for user in self.ledger.iter_users(chain_name):
            result.users += 1
            last_calc = await self.ledger.get_last_calculated_at(chain_name, user)
            reference = last_calc if last_calc is not None else now - self.lookback
            lag = now - reference
            if lag > self.threshold:
                result.lagging.append(
                    LaggingUser(user, last_calc, lag.total_seconds() / 3600)
                )

        logger.info(
            f"[Backfill] {chain_name}: {len(result.lagging)} of {result.users} "
            f"user(s) behind by more than {self.settings.lag_threshold_hours}h"
        )
        return result

    async def scan(self, chain_name: str) -> BackfillResult:
        """
        Check, then publish the uncredited hourly slices of every lagging user.

        The repaired range is [last_calculated_at, now - interval); the
        scheduler covers the most recent interval.
        """
        now = self.clock()
        result = await self.check(chain_name)
        end = now - timedelta(minutes=self.settings.interval)

        for lagging in result.lagging:
            start = lagging.last_calculated_at or now - self.lookback
            if start >= end:
                continue
            missing = await self.ledger.get_missing_periods(
                chain_name, lagging.user_address, start, end, self.slice
            )
            result.skipped += len(split_time_range(start, end, self.slice)) - len(missing)
            for period in missing:
                await self._publish(
                    PointsTask(chain_name, lagging.user_address, period.start, period.end)
                )
                result.published += 1

        logger.info(
            f"[Backfill] {chain_name}: scan published {result.published} task(s) "
            f"for {len(result.lagging)} lagging user(s)"
        )
        return result

    async def _publish(self, task: PointsTask) -> None:
        if self.bus is None:
            raise RuntimeError("BackfillService created without a task bus")
        await self.bus.publish(task)
