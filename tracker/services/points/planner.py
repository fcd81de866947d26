"""
Points task planning.

Pure functions deciding which windows to publish for a user.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from tracker.config.constants import (
    BACKFILL_SLICE_LARGE,
    BACKFILL_SLICE_MEDIUM,
    BACKFILL_SLICE_SMALL,
)
from tracker.services.ledger import TimePeriod
from tracker.utils.datetime_utils import ensure_utc


def backfill_slice(gap: timedelta) -> timedelta:
    """
    Slice length for a backfill gap.

    Up to an hour: 15 minutes. Up to a day: 1 hour. Longer: 6 hours.
    """
    if gap <= timedelta(hours=1):
        return timedelta(minutes=BACKFILL_SLICE_SMALL)
    if gap <= timedelta(hours=24):
        return timedelta(minutes=BACKFILL_SLICE_MEDIUM)
    return timedelta(minutes=BACKFILL_SLICE_LARGE)


def split_time_range(start: datetime, end: datetime, step: timedelta) -> list[TimePeriod]:
    """
    Cut [start, end) into consecutive slices of `step`, the last one shorter.

    Raises:
        ValueError: If step is not positive
    """
    if step <= timedelta(0):
        raise ValueError("step must be positive")
    start, end = ensure_utc(start), ensure_utc(end)
    periods: list[TimePeriod] = []
    current = start
    while current < end:
        slice_end = min(current + step, end)
        periods.append(TimePeriod(current, slice_end))
        current = slice_end
    return periods


@dataclass
class UserPlan:
    """Windows to publish for one user on one tick."""

    backfill: list[TimePeriod] = field(default_factory=list)
    current: TimePeriod | None = None

    @property
    def periods(self) -> list[TimePeriod]:
        return self.backfill + ([self.current] if self.current else [])


def plan_user(last_calculated_at: datetime, now: datetime, interval: timedelta) -> UserPlan:
    """
    Plan one scheduler tick for a user.

    Args:
        last_calculated_at: End of the latest credited window (or the default lookback)
        now: Tick time
        interval: Scheduler interval

    Returns:
        Backfill slices over [last_calc, now - interval) and the current
        window [max(last_calc, now - interval), now)
    """
    last_calc, now = ensure_utc(last_calculated_at), ensure_utc(now)
    period_start = now - interval

    plan = UserPlan()
    if last_calc < period_start:
        plan.backfill = split_time_range(
            last_calc, period_start, backfill_slice(period_start - last_calc)
        )

    current_start = max(last_calc, period_start)
    if current_start < now:
        plan.current = TimePeriod(current_start, now)
    return plan
