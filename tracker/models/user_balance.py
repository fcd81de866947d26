"""
User balance model.

Derived cache of the latest balance_after per (chain, address).
"""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tracker.models.base import Base
from tracker.models.types import TokenAmountType, UTCDateTime
from tracker.utils.datetime_utils import utc_now


class UserBalance(Base):
    """Current balance of one address on one chain."""

    __tablename__ = "user_balances"

    chain_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    current_balance: Mapped[str] = mapped_column(
        TokenAmountType, nullable=False, default="0"
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False
    )
