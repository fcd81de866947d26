"""`health check` command."""

import argparse
import json

from tracker.config.constants import EXIT_OK, EXIT_UNHEALTHY
from tracker.config.database import create_engine, create_session_maker
from tracker.config.settings import Settings
from tracker.services.health_service import HealthService
from tracker.services.ledger import Ledger


def add_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("health", help="Health checks")
    actions = parser.add_subparsers(dest="action", required=True)
    actions.add_parser("check", help="Print a JSON health report; exit 3 when unhealthy")
    parser.set_defaults(handler=run_health)


async def run_health(settings: Settings, args: argparse.Namespace | None = None) -> int:
    engine = create_engine(settings.database)
    try:
        report = await HealthService(Ledger(create_session_maker(engine)), settings).check()
    finally:
        await engine.dispose()

    print(json.dumps(report.to_dict(), indent=2))
    return EXIT_OK if report.healthy else EXIT_UNHEALTHY
