"""
Exception handling utilities.

Defines categorized exception types for proper error handling.
"""

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError


class TrackerError(Exception):
    """Base exception for tracker errors."""
    pass


class ConfigurationError(TrackerError):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


class FatalListenerError(TrackerError):
    """Raised when a chain listener cannot continue (bad ABI, bad contract)."""
    pass


class TransientError(TrackerError):
    """Base for failures that are retried on the next tick or delivery."""
    pass


class RpcError(TransientError):
    """Raised when a chain RPC call fails."""
    pass


class RpcTimeoutError(RpcError):
    """Raised when a chain RPC call times out."""
    pass


class BrokerError(TransientError):
    """Raised when the task broker cannot be reached or rejects a publish."""
    pass


class StoreUnavailable(TransientError):
    """Raised on store transport failures (connection loss, deadlock)."""
    pass


class Conflict(TrackerError):
    """Raised on primary/unique key collision; safe to ignore on replay."""
    pass


class LogDecodeError(TrackerError):
    """Raised when a chain log cannot be decoded."""
    pass


class TaskDecodeError(TrackerError):
    """Raised when a points task payload is malformed. Never retried."""
    pass


class InvariantViolation(TrackerError):
    """Raised when persisted state would break a ledger invariant."""
    pass


class CursorRegressionError(InvariantViolation):
    """Raised on an attempt to move a chain cursor backwards."""
    pass


# Exception categories based on handling strategy

# Replay-safe - the write already happened
SAFE_TO_IGNORE = (
    Conflict,
)

# Retry on next tick / redelivery
RETRIABLE = (
    TransientError,
)

# Stop the owning component
FATAL = (
    ConfigurationError,
    FatalListenerError,
)


def is_retriable(exc: BaseException) -> bool:
    """
    Check if exception is worth retrying.

    Args:
        exc: Exception to check

    Returns:
        True if a later attempt may succeed
    """
    return isinstance(exc, RETRIABLE)


def is_fatal(exc: BaseException) -> bool:
    """
    Check if exception must stop the component.

    Args:
        exc: Exception to check

    Returns:
        True if exception is fatal
    """
    return isinstance(exc, FATAL)


def translate_store_error(exc: Exception, operation: str) -> TrackerError:
    """
    Map a SQLAlchemy error to the tracker taxonomy.

    Args:
        exc: Error raised by the driver / ORM
        operation: Ledger operation name for the message

    Returns:
        Conflict for constraint violations, StoreUnavailable otherwise
    """
    if isinstance(exc, IntegrityError):
        return Conflict(f"{operation}: {exc.orig}")
    if isinstance(exc, (OperationalError, InterfaceError, DBAPIError)):
        return StoreUnavailable(f"{operation}: {exc}")
    return StoreUnavailable(f"{operation}: {exc!r}")
