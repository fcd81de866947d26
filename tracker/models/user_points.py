"""
User points model.
"""

from datetime import datetime

from sqlalchemy import Double, String
from sqlalchemy.orm import Mapped, mapped_column

from tracker.models.base import Base
from tracker.models.types import UTCDateTime
from tracker.utils.datetime_utils import utc_now


class UserPoints(Base):
    """
    Accrued loyalty points of one address on one chain.

    Written only together with a PointsCalculationHistory row.
    """

    __tablename__ = "user_points"

    chain_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    total_points: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    last_calculated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<UserPoints(chain={self.chain_name}, user={self.user_address}, "
            f"total={self.total_points}, last_calculated_at={self.last_calculated_at})>"
        )
