"""
Repositories.

Data access layer over an AsyncSession.
"""

from tracker.repositories.balance_repository import (
    BalanceChangeRepository,
    UserBalanceRepository,
)
from tracker.repositories.base import BaseRepository
from tracker.repositories.chain_status_repository import ChainStatusRepository
from tracker.repositories.points_repository import (
    PointsHistoryRepository,
    UserPointsRepository,
)

__all__ = [
    "BaseRepository",
    "BalanceChangeRepository",
    "ChainStatusRepository",
    "PointsHistoryRepository",
    "UserBalanceRepository",
    "UserPointsRepository",
]
