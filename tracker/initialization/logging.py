"""
Tracker Initialization - Logging Module.

Configures loguru for the tracker processes and routes stdlib logging
(dramatiq, sqlalchemy, web3, apscheduler) into it.
"""

import logging
import sys

from loguru import logger

from tracker.config.settings import LoggingSettings


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(settings: LoggingSettings | None = None) -> None:
    """Configure stderr and optional file sinks with rotation."""
    settings = settings or LoggingSettings()

    logger.remove()
    logger.add(sys.stderr, level=settings.level)
    if settings.file:
        logger.add(
            settings.file,
            rotation=settings.rotation,
            retention=settings.retention,
            level=settings.level,
            encoding="utf-8",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # Per-statement SQL and per-request RPC logs stay out unless asked for
    for noisy in ("sqlalchemy.engine", "web3", "urllib3", "pika"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
