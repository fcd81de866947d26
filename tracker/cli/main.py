"""
Command-line entry point.

Usage:
    erc20-tracker [-c CONFIG] daemon
    erc20-tracker [-c CONFIG] backfill points <chain> <start> <end>
    erc20-tracker [-c CONFIG] backfill check <chain>
    erc20-tracker [-c CONFIG] backfill scan <chain>
    erc20-tracker [-c CONFIG] health check

Exit codes: 0 success, 1 configuration error, 2 transient startup
failure, 3 unhealthy.
"""

import argparse
import asyncio
from collections.abc import Sequence

from loguru import logger

from tracker import __version__
from tracker.cli import backfill, health
from tracker.cli.daemon import run_daemon
from tracker.config.constants import EXIT_CONFIG_ERROR
from tracker.config.settings import load_settings
from tracker.initialization.logging import setup_logging
from tracker.utils.exceptions import ConfigurationError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="erc20-tracker",
        description="Multi-chain ERC20 balance tracker with time-weighted points",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="YAML config file (default: $TRACKER_CONFIG or config/config.yaml)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    daemon = subparsers.add_parser("daemon", help="Run listeners, scheduler and worker")
    daemon.set_defaults(handler=run_daemon)

    backfill.add_parser(subparsers)
    health.add_parser(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    setup_logging(settings.logging)
    return asyncio.run(args.handler(settings, args))
