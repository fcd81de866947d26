"""
Standard type definitions for database models.

Provides consistent column types for token amounts, timestamps and ids.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator

from tracker.utils.datetime_utils import ensure_utc

# Raw token amount as a decimal string
# uint256 max has 78 digits; one extra for the sign of an underflowed balance
TokenAmountType = String(79)

# Autoincrement id that stays a rowid alias on SQLite
BigIdType = BigInteger().with_variant(Integer(), "sqlite")


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    Backends without native timezone support return naive values;
    they are always UTC and are re-tagged on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)
