"""
Database engine and session factories.

Components receive a session maker explicitly; nothing here is a
process-wide singleton.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from tracker.config.settings import DatabaseSettings


def create_engine(settings: DatabaseSettings, *, null_pool: bool = False) -> AsyncEngine:
    """
    Create an async engine.

    Args:
        settings: Database settings
        null_pool: Open a fresh connection per session. Required when the
            engine is shared by several event loops (dramatiq worker threads).

    Returns:
        AsyncEngine
    """
    url = settings.sqlalchemy_url
    if null_pool:
        return create_async_engine(url, echo=settings.echo, poolclass=NullPool)
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.echo)
    return create_async_engine(
        url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        pool_pre_ping=True,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session maker bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
