"""
Chain status model.

Per-chain ingestion cursor.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from tracker.models.base import Base
from tracker.models.types import UTCDateTime
from tracker.utils.datetime_utils import utc_now


class ChainStatus(Base):
    """
    Ingestion cursor of one chain.

    `last_processed_block` is the highest block whose logs are fully
    committed. Only moves forward.
    """

    __tablename__ = "chain_status"

    chain_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_processed_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<ChainStatus(chain={self.chain_name}, "
            f"last_processed_block={self.last_processed_block})>"
        )
