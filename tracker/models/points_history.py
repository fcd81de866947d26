"""
Points calculation history model.

Audit log of credited windows; doubles as the idempotency oracle.
"""

from datetime import datetime

from sqlalchemy import Double, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from tracker.models.base import Base
from tracker.models.types import BigIdType, UTCDateTime
from tracker.utils.datetime_utils import utc_now


class PointsCalculationHistory(Base):
    """One credited window [period_start, period_end)."""

    __tablename__ = "points_calculation_history"
    __table_args__ = (
        Index(
            "ix_points_history_user_period",
            "chain_name", "user_address", "period_start", "period_end",
        ),
    )

    id: Mapped[int] = mapped_column(BigIdType, primary_key=True, autoincrement=True)
    chain_name: Mapped[str] = mapped_column(String(64), nullable=False)
    user_address: Mapped[str] = mapped_column(String(42), nullable=False)
    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    points_added: Mapped[float] = mapped_column(Double, nullable=False)
    total_points: Mapped[float] = mapped_column(Double, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
