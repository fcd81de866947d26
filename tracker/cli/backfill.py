"""
`backfill` commands.

points <chain> <start> <end>: publish hourly tasks for every user
check <chain>: report users more than 2h behind
scan <chain>: check, then publish tasks repairing the gaps
"""

import argparse
import json

from loguru import logger

from jobs.broker import check_broker, create_broker
from jobs.tasks.points_calculation import PointsTaskBus
from tracker.config.constants import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_STARTUP_ERROR
from tracker.config.database import create_engine, create_session_maker
from tracker.config.settings import Settings
from tracker.services.backfill_service import BackfillService
from tracker.services.ledger import Ledger
from tracker.utils.datetime_utils import parse_rfc3339
from tracker.utils.exceptions import ConfigurationError, TransientError


def add_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("backfill", help="Points backfill tools")
    actions = parser.add_subparsers(dest="action", required=True)

    points = actions.add_parser("points", help="Publish tasks for a time window")
    points.add_argument("chain", help="Chain name")
    points.add_argument("start", help="Window start (RFC3339)")
    points.add_argument("end", help="Window end (RFC3339)")

    check = actions.add_parser("check", help="Report users with stale points")
    check.add_argument("chain", help="Chain name")

    scan = actions.add_parser("scan", help="Report and repair stale points")
    scan.add_argument("chain", help="Chain name")

    parser.set_defaults(handler=run_backfill)


async def run_backfill(settings: Settings, args: argparse.Namespace) -> int:
    """Dispatch a backfill action and print its JSON result."""
    try:
        settings.get_chain(args.chain)
        if args.action == "points":
            start = parse_rfc3339(args.start)
            end = parse_rfc3339(args.end)
            if end <= start:
                raise ConfigurationError("end must be after start")
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Invalid arguments: {e}")
        return EXIT_CONFIG_ERROR

    engine = create_engine(settings.database)
    ledger = Ledger(create_session_maker(engine))
    broker = None
    try:
        await ledger.ping()
        bus = None
        if args.action in ("points", "scan"):
            broker = create_broker(settings.broker)
            check_broker(broker, settings.broker.queue)
            bus = PointsTaskBus(broker, settings.broker)
        service = BackfillService(ledger, bus, settings.points)

        if args.action == "points":
            result = await service.backfill_points(args.chain, start, end)
        elif args.action == "check":
            result = await service.check(args.chain)
        else:
            result = await service.scan(args.chain)
    except TransientError as e:
        logger.error(f"Backfill {args.action} failed: {e}")
        return EXIT_STARTUP_ERROR
    finally:
        if broker is not None:
            broker.close()
        await engine.dispose()

    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK
