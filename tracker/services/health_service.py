"""
Health Service.

One-shot health report over the store, chain cursors and points lag,
with an integer score. Store outage weighs more than chain lag, chain
lag more than points lag.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger

from tracker.config.constants import (
    HEALTH_BASELINE_SCORE,
    HEALTH_CHAIN_SEVERE_LAG_HOURS,
    HEALTH_PENALTY_CHAIN_SEVERE_LAG,
    HEALTH_PENALTY_CHAIN_UNHEALTHY,
    HEALTH_PENALTY_POINTS_SEVERE_LAG,
    HEALTH_PENALTY_POINTS_UNHEALTHY,
    HEALTH_PENALTY_STORE_DOWN,
    HEALTH_POINTS_AVG_LAG_HOURS,
    HEALTH_POINTS_SEVERE_LAG_HOURS,
)
from tracker.config.settings import Settings
from tracker.services.ledger import Ledger
from tracker.utils.datetime_utils import format_rfc3339, hours_between, utc_now
from tracker.utils.exceptions import TransientError


@dataclass
class ChainHealth:
    """Cursor freshness of one chain."""

    chain_name: str
    last_processed_block: int | None = None
    updated_at: datetime | None = None
    lag_hours: float | None = None
    healthy: bool = False
    error: str | None = None

    @property
    def severely_lagging(self) -> bool:
        return self.lag_hours is not None and self.lag_hours > HEALTH_CHAIN_SEVERE_LAG_HOURS

    def to_dict(self) -> dict:
        return {
            "chain_name": self.chain_name,
            "last_processed_block": self.last_processed_block,
            "updated_at": format_rfc3339(self.updated_at) if self.updated_at else None,
            "lag_hours": round(self.lag_hours, 2) if self.lag_hours is not None else None,
            "healthy": self.healthy,
            "error": self.error,
        }


@dataclass
class PointsHealth:
    """Points lag across all chains."""

    users: int = 0
    lagging_users: int = 0
    average_lag_hours: float = 0.0
    healthy: bool = True
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "users": self.users,
            "lagging_users": self.lagging_users,
            "average_lag_hours": round(self.average_lag_hours, 2),
            "healthy": self.healthy,
            "error": self.error,
        }


@dataclass
class HealthReport:
    """Full health report."""

    checked_at: datetime
    store_ok: bool
    store_error: str | None = None
    tables: dict[str, str | None] = field(default_factory=dict)
    chains: list[ChainHealth] = field(default_factory=list)
    points: PointsHealth | None = None
    score: int = 0

    @property
    def healthy(self) -> bool:
        return (
            self.store_ok
            and all(chain.healthy for chain in self.chains)
            and (self.points is None or self.points.healthy)
        )

    def to_dict(self) -> dict:
        return {
            "checked_at": format_rfc3339(self.checked_at),
            "healthy": self.healthy,
            "score": self.score,
            "store": {"ok": self.store_ok, "error": self.store_error, "tables": self.tables},
            "chains": [chain.to_dict() for chain in self.chains],
            "points": self.points.to_dict() if self.points else None,
        }


def compute_score(
    store_ok: bool, chains: list[ChainHealth], points: PointsHealth | None
) -> int:
    """
    Health score: 100 minus penalties, floored at 0.

    -50 store down, -20 per unhealthy chain, -10 per chain over 24h behind,
    -30 points unhealthy, -20 average points lag over 48h.
    """
    score = HEALTH_BASELINE_SCORE
    if not store_ok:
        score -= HEALTH_PENALTY_STORE_DOWN
    for chain in chains:
        if not chain.healthy:
            score -= HEALTH_PENALTY_CHAIN_UNHEALTHY
        if chain.severely_lagging:
            score -= HEALTH_PENALTY_CHAIN_SEVERE_LAG
    if points is not None:
        if not points.healthy:
            score -= HEALTH_PENALTY_POINTS_UNHEALTHY
        if points.average_lag_hours > HEALTH_POINTS_SEVERE_LAG_HOURS:
            score -= HEALTH_PENALTY_POINTS_SEVERE_LAG
    return max(score, 0)


class HealthService:
    """Builds health reports."""

    def __init__(
        self,
        ledger: Ledger,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ledger = ledger
        self.settings = settings
        self.clock = clock
        self.lag_threshold = settings.points.lag_threshold_hours

    async def check(self) -> HealthReport:
        """Run every check and score the result."""
        now = self.clock()
        report = HealthReport(checked_at=now, store_ok=True)

        try:
            await self.ledger.ping()
        except TransientError as e:
            report.store_ok = False
            report.store_error = str(e)
            logger.error(f"[Health] Store unreachable: {e}")

        if report.store_ok:
            report.tables = await self.ledger.check_tables()
            broken = {name: err for name, err in report.tables.items() if err}
            if broken:
                report.store_ok = False
                report.store_error = f"inaccessible tables: {', '.join(sorted(broken))}"
                logger.error(f"[Health] {report.store_error}")

        if report.store_ok:
            for chain in self.settings.chains:
                report.chains.append(await self.check_chain(chain.name, now))
            report.points = await self.check_points(now)

        report.score = compute_score(report.store_ok, report.chains, report.points)
        logger.info(f"[Health] Score {report.score}, healthy={report.healthy}")
        return report

    async def check_chain(self, chain_name: str, now: datetime) -> ChainHealth:
        """Chain is healthy when its cursor moved within the lag threshold."""
        health = ChainHealth(chain_name)
        try:
            cursor = await self.ledger.get_chain_cursor(chain_name)
        except TransientError as e:
            health.error = str(e)
            return health

        if cursor is None:
            health.error = "no cursor row"
            return health

        health.last_processed_block = cursor.last_processed_block
        health.updated_at = cursor.updated_at
        health.lag_hours = hours_between(cursor.updated_at, now)
        health.healthy = health.lag_hours <= self.lag_threshold
        if not health.healthy:
            logger.warning(
                f"[Health] {chain_name}: cursor idle for {health.lag_hours:.1f}h "
                f"(block {cursor.last_processed_block})"
            )
        return health

    async def check_points(self, now: datetime) -> PointsHealth:
        """
        Points are healthy unless the users behind the lag threshold
        average more than 24h of lag.
        """
        health = PointsHealth()
        lookback = timedelta(hours=self.settings.points.first_calc_lookback_hours)
        lags: list[float] = []
        try:
            for chain in self.settings.chains:
                chain_lags = await self.ledger.get_points_lag(chain.name, now, lookback)
                health.users += len(chain_lags)
                lags.extend(lag for lag in chain_lags.values() if lag > self.lag_threshold)
        except TransientError as e:
            health.healthy = False
            health.error = str(e)
            return health

        health.lagging_users = len(lags)
        if lags:
            health.average_lag_hours = sum(lags) / len(lags)
        health.healthy = health.average_lag_hours <= HEALTH_POINTS_AVG_LAG_HOURS
        return health
