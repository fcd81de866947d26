"""Database access for dramatiq tasks."""

from sqlalchemy.ext.asyncio import AsyncEngine

from tracker.config.database import create_engine, create_session_maker
from tracker.config.settings import DatabaseSettings
from tracker.services.ledger import Ledger


def create_task_engine(settings: DatabaseSettings) -> AsyncEngine:
    """
    Create the engine used by worker threads.

    NullPool: every worker thread runs its own event loop, and pooled
    asyncpg connections are bound to the loop that opened them.
    The caller owns the engine and disposes it at shutdown.
    """
    return create_engine(settings, null_pool=True)


def create_task_ledger(engine: AsyncEngine) -> Ledger:
    """Create a ledger for use in worker threads."""
    return Ledger(create_session_maker(engine))
