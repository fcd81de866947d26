"""
Points calculation task.

Publisher and consumer sides of the points task bus. The payload travels
as the message kwargs: chain_name, user_address, period_start, period_end.
"""

import asyncio
from typing import Any

import dramatiq
from loguru import logger

from jobs.async_runner import run_async
from tracker.config.constants import POINTS_ACTOR_NAME, POINTS_TASK_TIME_LIMIT_MS
from tracker.config.settings import BrokerSettings
from tracker.services.points.task import PointsTask
from tracker.services.points.worker import PointsWorker
from tracker.utils.exceptions import BrokerError, TaskDecodeError


class PointsTaskBus:
    """Publishes points tasks to the broker queue."""

    def __init__(self, broker: dramatiq.Broker, settings: BrokerSettings) -> None:
        """
        Initialize bus.

        Args:
            broker: Dramatiq broker
            settings: Broker settings (queue name, publish timeout)
        """
        self.broker = broker
        self.queue_name = settings.queue
        self.timeout = settings.publish_timeout
        self.broker.declare_queue(self.queue_name)

    def build_message(self, task: PointsTask) -> dramatiq.Message:
        return dramatiq.Message(
            queue_name=self.queue_name,
            actor_name=POINTS_ACTOR_NAME,
            args=(),
            kwargs=task.to_payload(),
            options={},
        )

    async def publish(self, task: PointsTask) -> None:
        """
        Enqueue one task.

        Raises:
            BrokerError: Broker unreachable or publish timed out
        """
        message = self.build_message(task)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.broker.enqueue, message), timeout=self.timeout
            )
        except TimeoutError as e:
            raise BrokerError(f"publish of {task} timed out after {self.timeout}s") from e
        except Exception as e:
            raise BrokerError(f"publish of {task} failed: {e}") from e
        logger.debug(f"[PointsBus] Published {task}")


def declare_points_actor(
    broker: dramatiq.Broker, worker: PointsWorker, settings: BrokerSettings
) -> dramatiq.Actor:
    """
    Register the points actor on a broker.

    The actor runs the async worker on its thread's event loop. Malformed
    payloads raise TaskDecodeError, which the Retries middleware turns
    into an immediate failure (dead letter) through the `throws` option.
    """

    def calculate_points(*args: Any, **payload: Any) -> str:
        if args:
            raise TaskDecodeError(f"unexpected positional arguments {args!r}")
        outcome = run_async(worker.handle_payload(payload))
        return outcome.value

    return dramatiq.actor(
        calculate_points,
        actor_name=POINTS_ACTOR_NAME,
        queue_name=settings.queue,
        broker=broker,
        max_retries=settings.max_retries,
        min_backoff=settings.min_backoff_ms,
        max_backoff=settings.max_backoff_ms,
        time_limit=POINTS_TASK_TIME_LIMIT_MS,
        throws=(TaskDecodeError,),
    )
