"""
Dramatiq broker configuration.

RabbitMQ (amqp://) or Redis (redis://) message broker for the points
task queue. Brokers are built explicitly and passed around; nothing is
registered as a global default at import time.
"""

import dramatiq
from dramatiq.brokers.rabbitmq import RabbitmqBroker
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import (
    AgeLimit,
    Callbacks,
    CurrentMessage,
    Middleware,
    Pipelines,
    Retries,
    ShutdownNotifications,
    TimeLimit,
)
from loguru import logger

from tracker.config.constants import POINTS_TASK_TIME_LIMIT_MS
from tracker.config.settings import BrokerSettings
from tracker.utils.exceptions import BrokerError


def build_middleware(settings: BrokerSettings) -> list[Middleware]:
    """
    Middleware stack of the points broker.

    ShutdownNotifications: Allows workers to gracefully shutdown
    CurrentMessage: Provides access to current message in actors
    Retries: Exponential backoff for failed tasks; exceptions listed in
        an actor's `throws` option fail the message (dead letter) at once
    """
    return [
        AgeLimit(),
        TimeLimit(time_limit=POINTS_TASK_TIME_LIMIT_MS),
        ShutdownNotifications(),
        Callbacks(),
        Pipelines(),
        CurrentMessage(),
        Retries(
            max_retries=settings.max_retries,
            min_backoff=settings.min_backoff_ms,
            max_backoff=settings.max_backoff_ms,
        ),
    ]


def create_broker(settings: BrokerSettings) -> dramatiq.Broker:
    """
    Build the broker selected by the URL scheme.

    Raises:
        BrokerError: If the broker cannot be constructed
    """
    middleware = build_middleware(settings)
    try:
        if settings.url.startswith(("amqp://", "amqps://")):
            broker: dramatiq.Broker = RabbitmqBroker(url=settings.url, middleware=middleware)
        else:
            broker = RedisBroker(url=settings.url, middleware=middleware)
    except Exception as e:
        raise BrokerError(f"cannot create broker: {e}") from e

    logger.info(
        f"Dramatiq broker initialized: {type(broker).__name__}, queue {settings.queue}"
    )
    return broker


def check_broker(broker: dramatiq.Broker, queue_name: str) -> None:
    """
    Declare the points queue and verify the broker is reachable.

    Raises:
        BrokerError: If the broker cannot be reached
    """
    try:
        broker.declare_queue(queue_name)
        if isinstance(broker, RabbitmqBroker):
            # Opens the connection of the current thread
            _ = broker.connection
        elif isinstance(broker, RedisBroker):
            broker.client.ping()
    except Exception as e:
        raise BrokerError(f"broker unreachable: {e}") from e
