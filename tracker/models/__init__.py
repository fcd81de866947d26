"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from tracker.models.balance_change import BalanceChange
from tracker.models.base import Base
from tracker.models.chain_status import ChainStatus
from tracker.models.enums import EventType
from tracker.models.points_history import PointsCalculationHistory
from tracker.models.user_balance import UserBalance
from tracker.models.user_points import UserPoints

__all__ = [
    "Base",
    "BalanceChange",
    "ChainStatus",
    "EventType",
    "PointsCalculationHistory",
    "UserBalance",
    "UserPoints",
]
