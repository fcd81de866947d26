"""
Database decorators for store error translation.

Ledger methods open their own transaction (`async with maker.begin()`),
which rolls back on any exception; these decorators only map driver
errors onto the tracker error taxonomy.
"""

from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tracker.utils.exceptions import translate_store_error

T = TypeVar("T")


def store_operation(
    name: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator translating SQLAlchemy errors raised by a ledger operation.

    Usage:
        @store_operation("append_balance_change")
        async def append_balance_change(self, change):
            async with self._session_maker.begin() as session:
                ...

    IntegrityError becomes Conflict (logged at DEBUG, it is expected on
    replay); everything else becomes StoreUnavailable (logged at WARNING).

    Args:
        name: Operation name used in messages
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError as e:
                translated = translate_store_error(e, name)
                if isinstance(e, IntegrityError):
                    logger.debug(f"[Ledger] {name} conflict: {e.orig}")
                else:
                    logger.warning(f"[Ledger] {name} failed: {type(e).__name__}: {e}")
                raise translated from e
        return wrapper
    return decorator
