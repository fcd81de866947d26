"""
Balance change model.

Append-only log of per-address balance movements reconstructed from
ERC20 events.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tracker.models.base import Base
from tracker.models.enums import EventType
from tracker.models.types import BigIdType, TokenAmountType, UTCDateTime
from tracker.utils.datetime_utils import utc_now


class BalanceChange(Base):
    """
    One balance movement of one address.

    A plain Transfer yields two rows (transfer_out, transfer_in) sharing
    tx_hash and log_index; event_type keeps them apart in the unique key.
    Rows are never updated or deleted.
    """

    __tablename__ = "balance_changes"
    __table_args__ = (
        UniqueConstraint(
            "chain_name", "tx_hash", "log_index", "event_type",
            name="uq_balance_changes_event",
        ),
        Index("ix_balance_changes_user_time", "chain_name", "user_address", "event_time"),
        Index(
            "ix_balance_changes_user_order",
            "chain_name", "user_address", "block_number", "log_index",
        ),
    )

    id: Mapped[int] = mapped_column(BigIdType, primary_key=True, autoincrement=True)

    chain_name: Mapped[str] = mapped_column(String(64), nullable=False)
    user_address: Mapped[str] = mapped_column(String(42), nullable=False)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Raw token units as decimal strings
    amount: Mapped[str] = mapped_column(TokenAmountType, nullable=False)
    balance_after: Mapped[str] = mapped_column(TokenAmountType, nullable=False)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    event_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<BalanceChange(chain={self.chain_name}, user={self.user_address}, "
            f"type={self.event_type}, amount={self.amount}, "
            f"balance_after={self.balance_after}, block={self.block_number})>"
        )

    @property
    def signed_amount(self) -> int:
        """Amount with the direction of the movement applied."""
        return EventType(self.event_type).sign * int(self.amount)
