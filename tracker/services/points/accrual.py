"""
Time-weighted points accrual.

A window [S, E) is cut at every balance change inside it. Each segment
earns balance * rate * (segment / standard interval), where balance is
expressed in whole tokens. Dividing by the standard interval rather than
by the window length keeps the law additive: crediting [S, E) at once or
as any contiguous partition yields the same total.
"""

import math
from collections.abc import Sequence
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from tracker.config.constants import TOKEN_DECIMALS
from tracker.utils.datetime_utils import ensure_utc


class BalanceSample(Protocol):
    """A balance change as seen by the accrual law."""

    event_time: datetime
    balance_after: str | int


def _micros(delta: timedelta) -> int:
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def segment_points(
    balance: int,
    duration: timedelta,
    rate: float,
    interval: timedelta,
    decimals: int = TOKEN_DECIMALS,
) -> float:
    """
    Points earned by a constant balance over one segment.

    Negative balances (recorded underflows) earn nothing.
    """
    if balance <= 0 or duration <= timedelta(0):
        return 0.0
    product = (
        Decimal(balance)
        / Decimal(10) ** decimals
        * Decimal(str(rate))
        * Decimal(_micros(duration))
        / Decimal(_micros(interval))
    )
    return float(product)


def compute_points(
    opening_balance: int,
    changes: Sequence[BalanceSample],
    start: datetime,
    end: datetime,
    rate: float,
    interval: timedelta,
    decimals: int = TOKEN_DECIMALS,
) -> float:
    """
    Points earned over [start, end).

    Args:
        opening_balance: Balance in force at `start`
        changes: Changes with start <= event_time < end, chronological
        start: Window start
        end: Window end
        rate: Points per whole token per standard interval
        interval: Standard interval
        decimals: Token decimals

    Returns:
        Points, 0.0 for an empty or inverted window
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    if end <= start:
        return 0.0
    if interval <= timedelta(0):
        raise ValueError("interval must be positive")

    parts: list[float] = []
    balance = opening_balance
    cursor = start
    for change in changes:
        at = min(max(ensure_utc(change.event_time), start), end)
        # Simultaneous changes give zero-length segments
        parts.append(segment_points(balance, at - cursor, rate, interval, decimals))
        balance = int(change.balance_after)
        cursor = max(cursor, at)
    parts.append(segment_points(balance, end - cursor, rate, interval, decimals))
    return math.fsum(parts)
