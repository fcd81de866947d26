"""
`daemon` command.

Runs the chain listeners, the points scheduler and an in-process
dramatiq worker until SIGINT/SIGTERM or the first fatal listener error.
"""

import argparse
import asyncio
import signal

import dramatiq
from loguru import logger

from jobs.broker import check_broker, create_broker
from jobs.tasks.points_calculation import PointsTaskBus, declare_points_actor
from jobs.utils import create_task_engine, create_task_ledger
from tracker.config.constants import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_STARTUP_ERROR
from tracker.config.database import create_engine, create_session_maker
from tracker.config.settings import Settings
from tracker.services.chain.client import ChainClient
from tracker.services.chain.listener import ChainListener
from tracker.services.chain.manager import ChainManager
from tracker.services.ledger import Ledger
from tracker.services.points.scheduler import PointsScheduler
from tracker.services.points.worker import PointsWorker
from tracker.utils.exceptions import TransientError


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still stops asyncio.run
            pass


async def run_daemon(settings: Settings, args: argparse.Namespace | None = None) -> int:
    """
    Run the tracker until stopped.

    Returns:
        0 on a clean shutdown, 1 after a fatal listener error,
        2 if the store or broker is unreachable at startup
    """
    engine = create_engine(settings.database)
    ledger = Ledger(create_session_maker(engine))

    try:
        await ledger.ping()
        await ledger.init_chain_cursors(settings.chains)
        broker = create_broker(settings.broker)
        check_broker(broker, settings.broker.queue)
    except TransientError as e:
        logger.error(f"Startup failed: {e}")
        await engine.dispose()
        return EXIT_STARTUP_ERROR

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    listeners = [
        ChainListener(chain, ChainClient(chain), ledger) for chain in settings.chains
    ]
    manager = ChainManager(listeners, stop_event)
    bus = PointsTaskBus(broker, settings.broker)
    scheduler = PointsScheduler(ledger, bus, manager.chain_names(), settings.points)

    task_engine = create_task_engine(settings.database)
    points_worker = PointsWorker(create_task_ledger(task_engine), settings.points)
    declare_points_actor(broker, points_worker, settings.broker)
    worker = dramatiq.Worker(
        broker,
        queues={settings.broker.queue},
        worker_threads=settings.broker.worker_threads,
    )
    # One in-flight message per worker thread
    worker.queue_prefetch = settings.broker.worker_threads

    exit_code = EXIT_OK
    # Starts the TimeLimit monitor, as the dramatiq CLI does
    broker.emit_after("process_boot")
    worker.start()
    manager.start()
    scheduler_task = asyncio.create_task(scheduler.run(stop_event), name="scheduler")
    fatal_task = asyncio.create_task(manager.wait_fatal(), name="fatal")
    stop_task = asyncio.create_task(stop_event.wait(), name="stop")
    logger.info(f"Daemon started: chains {', '.join(manager.chain_names())}")

    try:
        done, _ = await asyncio.wait(
            {fatal_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if fatal_task in done:
            logger.critical(f"Shutting down after fatal listener error: {fatal_task.result()}")
            exit_code = EXIT_CONFIG_ERROR
        else:
            logger.info("Shutdown requested")
    finally:
        stop_event.set()
        fatal_task.cancel()
        await manager.shutdown()
        await asyncio.gather(scheduler_task, return_exceptions=True)
        await asyncio.to_thread(worker.stop)
        broker.close()
        await task_engine.dispose()
        await engine.dispose()
        violations = {name: n for name, n in manager.invariant_violations.items() if n}
        if violations:
            logger.error(f"Invariant violations during run: {violations}")
        logger.info("Daemon stopped")

    return exit_code
