"""
Points Worker.

Consumes points tasks: idempotency gate, time-weighted accrual over the
window, then one transaction crediting points and appending history.
"""

from collections.abc import Mapping
from datetime import timedelta
from enum import StrEnum
from typing import Any

from loguru import logger

from tracker.config.settings import PointsSettings
from tracker.services.ledger import Ledger, PointsCredit
from tracker.services.points.accrual import compute_points
from tracker.services.points.task import PointsTask
from tracker.utils.exceptions import Conflict, TaskDecodeError, TransientError


class TaskOutcome(StrEnum):
    """How a task was acknowledged."""

    CREDITED = "credited"
    ALREADY_CALCULATED = "already_calculated"
    NO_POINTS = "no_points"


class PointsWorker:
    """
    Points task consumer.

    Transient errors propagate so the bus redelivers the task;
    TaskDecodeError propagates so the bus dead-letters it.
    """

    def __init__(self, ledger: Ledger, settings: PointsSettings) -> None:
        """
        Initialize worker.

        Args:
            ledger: Event ledger
            settings: Points settings (rate and standard interval)
        """
        self.ledger = ledger
        self.rate = settings.rate
        self.interval = timedelta(minutes=settings.interval)

    async def handle_payload(self, payload: Mapping[str, Any]) -> TaskOutcome:
        """Decode and process a raw bus payload."""
        try:
            task = PointsTask.from_payload(payload)
        except TaskDecodeError as e:
            logger.error(f"[PointsWorker] Dropping malformed task {dict(payload)!r}: {e}")
            raise
        return await self.process_task(task)

    async def process_task(self, task: PointsTask) -> TaskOutcome:
        """
        Credit one window.

        Returns:
            Outcome of the task
        """
        if await self.ledger.has_points_calculated(
            task.chain_name, task.user_address, task.period_start, task.period_end
        ):
            logger.debug(f"[PointsWorker] {task} already calculated")
            return TaskOutcome.ALREADY_CALCULATED

        points = await self.calculate(task)
        if points <= 0:
            logger.debug(f"[PointsWorker] {task} earns no points")
            return TaskOutcome.NO_POINTS

        try:
            total = await self.ledger.commit_points(
                PointsCredit(
                    chain_name=task.chain_name,
                    user_address=task.user_address,
                    period_start=task.period_start,
                    period_end=task.period_end,
                    points_added=points,
                )
            )
        except Conflict as e:
            if await self.ledger.has_points_calculated(
                task.chain_name, task.user_address, task.period_start, task.period_end
            ):
                logger.debug(f"[PointsWorker] {task} credited concurrently")
                return TaskOutcome.ALREADY_CALCULATED
            # Lost the first-credit race on another window of this user
            logger.warning(f"[PointsWorker] {task} not credited, retrying: {e}")
            raise TransientError(f"{task}: concurrent first credit") from e

        logger.success(f"[PointsWorker] {task}: +{points:.6f} points (total {total:.6f})")
        return TaskOutcome.CREDITED

    async def calculate(self, task: PointsTask) -> float:
        """Points earned over the task window, without writing anything."""
        opening = await self.ledger.get_balance_at(
            task.chain_name, task.user_address, task.period_start
        )
        changes = await self.ledger.get_balance_changes_in_period(
            task.chain_name, task.user_address, task.period_start, task.period_end
        )
        return compute_points(
            opening,
            changes,
            task.period_start,
            task.period_end,
            self.rate,
            self.interval,
        )
