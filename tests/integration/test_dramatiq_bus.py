"""Integration tests for the dramatiq points task bus."""

import asyncio
from datetime import timedelta

import dramatiq
import pytest
from dramatiq.brokers.stub import StubBroker

from jobs.broker import build_middleware
from jobs.tasks.points_calculation import PointsTaskBus, declare_points_actor
from tests.helpers import ALICE, NOW, ONE_TOKEN
from tracker.config.constants import POINTS_ACTOR_NAME
from tracker.config.settings import BrokerSettings
from tracker.models.enums import EventType
from tracker.services.ledger import NewBalanceChange
from tracker.services.points.task import PointsTask
from tracker.services.points.worker import PointsWorker
from tracker.utils.exceptions import TaskDecodeError

HOUR = timedelta(hours=1)
CHAIN = "testnet"


@pytest.fixture
def broker_settings():
    return BrokerSettings(url="redis://localhost:6379/0", max_retries=0, min_backoff_ms=10)


@pytest.fixture
def stub_broker(broker_settings):
    broker = StubBroker(middleware=build_middleware(broker_settings))
    broker.emit_after("process_boot")
    yield broker
    broker.flush_all()
    broker.close()


@pytest.fixture
def points_actor(stub_broker, ledger, points_settings, broker_settings):
    return declare_points_actor(
        stub_broker, PointsWorker(ledger, points_settings), broker_settings
    )


def run_worker(broker, queue_name):
    worker = dramatiq.Worker(broker, worker_threads=1, worker_timeout=100)
    worker.start()
    try:
        broker.join(queue_name, timeout=10_000)
        worker.join()
    finally:
        worker.stop()


class TestPointsTaskBus:
    """Publishing side."""

    @pytest.mark.asyncio
    async def test_publish_enqueues_payload_as_kwargs(self, stub_broker, broker_settings):
        bus = PointsTaskBus(stub_broker, broker_settings)
        task = PointsTask(CHAIN, ALICE, NOW - HOUR, NOW)

        await bus.publish(task)

        queue = stub_broker.queues[broker_settings.queue]
        message = dramatiq.Message.decode(queue.get_nowait())
        assert message.actor_name == POINTS_ACTOR_NAME
        assert list(message.args) == []
        assert message.kwargs == task.to_payload()
        assert PointsTask.from_payload(message.kwargs) == task


class TestPointsActor:
    """Consuming side."""

    @pytest.mark.asyncio
    async def test_actor_options(self, points_actor, broker_settings):
        assert points_actor.actor_name == POINTS_ACTOR_NAME
        assert points_actor.queue_name == broker_settings.queue
        assert points_actor.options["throws"] == (TaskDecodeError,)

    @pytest.mark.asyncio
    async def test_positional_arguments_are_rejected(self, points_actor):
        with pytest.raises(TaskDecodeError):
            points_actor.fn(CHAIN, ALICE)

    @pytest.mark.asyncio
    async def test_published_task_is_credited(
        self, stub_broker, points_actor, broker_settings, ledger
    ):
        await ledger.append_balance_change(
            NewBalanceChange(
                chain_name=CHAIN,
                user_address=ALICE,
                event_type=EventType.MINT,
                amount=10 * ONE_TOKEN,
                balance_after=10 * ONE_TOKEN,
                block_number=1,
                log_index=0,
                event_time=NOW - 2 * HOUR,
                tx_hash="0x" + "aa" * 32,
            )
        )
        bus = PointsTaskBus(stub_broker, broker_settings)
        await bus.publish(PointsTask(CHAIN, ALICE, NOW - HOUR, NOW))

        await asyncio.to_thread(run_worker, stub_broker, broker_settings.queue)

        points = await ledger.get_user_points(CHAIN, ALICE)
        assert points.total_points == pytest.approx(0.5, abs=1e-9)
        assert stub_broker.dead_letters == []

    @pytest.mark.asyncio
    async def test_malformed_task_is_dead_lettered(
        self, stub_broker, points_actor, broker_settings, ledger
    ):
        points_actor.send(chain_name=CHAIN, user_address=ALICE)

        await asyncio.to_thread(run_worker, stub_broker, broker_settings.queue)

        assert len(stub_broker.dead_letters) == 1
        assert await ledger.get_points_history(CHAIN, ALICE) == []
