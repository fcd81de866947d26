"""
Points repositories.

Data access layer for accrued points and their calculation history.
"""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models.points_history import PointsCalculationHistory
from tracker.models.user_points import UserPoints
from tracker.repositories.base import BaseRepository
from tracker.utils.datetime_utils import utc_now


class UserPointsRepository(BaseRepository[UserPoints]):
    """Repository for per-user point totals."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(UserPoints, session)

    async def get_points(
        self, chain_name: str, user_address: str, for_update: bool = False
    ) -> UserPoints | None:
        """Get points row, optionally locked."""
        return await self.get_by_pk((chain_name, user_address), for_update=for_update)

    async def get_last_calculated_map(
        self, chain_name: str
    ) -> dict[str, datetime]:
        """Get last_calculated_at of every user with points on a chain."""
        query = select(UserPoints.user_address, UserPoints.last_calculated_at).where(
            UserPoints.chain_name == chain_name
        )
        result = await self.session.execute(query)
        return {address: last_calc for address, last_calc in result.all()}

    async def credit(
        self,
        row: UserPoints | None,
        chain_name: str,
        user_address: str,
        points_added: float,
        calculated_until: datetime,
    ) -> UserPoints:
        """
        Add points and move last_calculated_at forward.

        Args:
            row: Existing (locked) row or None for a first credit
            chain_name: Chain name
            user_address: Address
            points_added: Positive points delta
            calculated_until: End of the credited window

        Returns:
            Updated or created row
        """
        if row is None:
            return await self.create(
                chain_name=chain_name,
                user_address=user_address,
                total_points=points_added,
                last_calculated_at=calculated_until,
            )
        row.total_points = row.total_points + points_added
        # Backfill slices may finish after a later current-period task
        if calculated_until > row.last_calculated_at:
            row.last_calculated_at = calculated_until
        row.updated_at = utc_now()
        await self.session.flush()
        return row


class PointsHistoryRepository(BaseRepository[PointsCalculationHistory]):
    """Repository for the points calculation audit log."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(PointsCalculationHistory, session)

    async def has_overlap(
        self,
        chain_name: str,
        user_address: str,
        start: datetime,
        end: datetime,
    ) -> bool:
        """
        Check whether any credited window intersects [start, end).

        Two half-open windows intersect iff each starts before the other ends.
        """
        query = select(func.count()).select_from(PointsCalculationHistory).where(
            PointsCalculationHistory.chain_name == chain_name,
            PointsCalculationHistory.user_address == user_address,
            PointsCalculationHistory.period_start < end,
            PointsCalculationHistory.period_end > start,
        )
        result = await self.session.execute(query)
        return (result.scalar() or 0) > 0

    async def get_windows(
        self,
        chain_name: str,
        user_address: str,
        start: datetime,
        end: datetime,
    ) -> list[tuple[datetime, datetime]]:
        """Credited windows intersecting [start, end), ordered by start."""
        query = (
            select(
                PointsCalculationHistory.period_start,
                PointsCalculationHistory.period_end,
            )
            .where(
                PointsCalculationHistory.chain_name == chain_name,
                PointsCalculationHistory.user_address == user_address,
                PointsCalculationHistory.period_start < end,
                PointsCalculationHistory.period_end > start,
            )
            .order_by(PointsCalculationHistory.period_start.asc())
        )
        result = await self.session.execute(query)
        return [(row_start, row_end) for row_start, row_end in result.all()]

    async def get_history(
        self, chain_name: str, user_address: str
    ) -> list[PointsCalculationHistory]:
        """Full history of one user, ordered by window start."""
        query = (
            select(PointsCalculationHistory)
            .where(
                PointsCalculationHistory.chain_name == chain_name,
                PointsCalculationHistory.user_address == user_address,
            )
            .order_by(
                PointsCalculationHistory.period_start.asc(),
                PointsCalculationHistory.id.asc(),
            )
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
