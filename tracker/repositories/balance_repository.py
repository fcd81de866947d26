"""
Balance repositories.

Data access layer for the balance change log and current balances.
"""

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models.balance_change import BalanceChange
from tracker.models.user_balance import UserBalance
from tracker.repositories.base import BaseRepository
from tracker.utils.datetime_utils import utc_now


class BalanceChangeRepository(BaseRepository[BalanceChange]):
    """Repository for the append-only balance change log."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(BalanceChange, session)

    async def get_in_period(
        self,
        chain_name: str,
        user_address: str,
        start: datetime,
        end: datetime,
    ) -> list[BalanceChange]:
        """
        Get changes with start <= event_time < end.

        Args:
            chain_name: Chain name
            user_address: Lowercase address
            start: Inclusive lower bound
            end: Exclusive upper bound

        Returns:
            Changes ordered by event time, then chain order
        """
        query = (
            select(BalanceChange)
            .where(
                BalanceChange.chain_name == chain_name,
                BalanceChange.user_address == user_address,
                BalanceChange.event_time >= start,
                BalanceChange.event_time < end,
            )
            .order_by(
                BalanceChange.event_time.asc(),
                BalanceChange.block_number.asc(),
                BalanceChange.log_index.asc(),
                BalanceChange.id.asc(),
            )
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_latest_before(
        self,
        chain_name: str,
        user_address: str,
        before: datetime,
    ) -> BalanceChange | None:
        """Get the last change strictly before a point in time."""
        query = (
            select(BalanceChange)
            .where(
                BalanceChange.chain_name == chain_name,
                BalanceChange.user_address == user_address,
                BalanceChange.event_time < before,
            )
            .order_by(
                BalanceChange.event_time.desc(),
                BalanceChange.block_number.desc(),
                BalanceChange.log_index.desc(),
                BalanceChange.id.desc(),
            )
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_latest(
        self, chain_name: str, user_address: str
    ) -> BalanceChange | None:
        """Get the last change in chain order (block_number, log_index)."""
        query = (
            select(BalanceChange)
            .where(
                BalanceChange.chain_name == chain_name,
                BalanceChange.user_address == user_address,
            )
            .order_by(
                BalanceChange.block_number.desc(),
                BalanceChange.log_index.desc(),
                BalanceChange.id.desc(),
            )
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_tx(
        self, chain_name: str, tx_hash: str
    ) -> Sequence[BalanceChange]:
        """Get all changes produced by one transaction."""
        query = (
            select(BalanceChange)
            .where(
                BalanceChange.chain_name == chain_name,
                BalanceChange.tx_hash == tx_hash,
            )
            .order_by(BalanceChange.log_index.asc(), BalanceChange.id.asc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())


class UserBalanceRepository(BaseRepository[UserBalance]):
    """Repository for current balances."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(UserBalance, session)

    async def get_balance(self, chain_name: str, user_address: str) -> str | None:
        """Current balance string or None."""
        row = await self.get_by_pk((chain_name, user_address))
        return row.current_balance if row else None

    async def upsert(
        self, chain_name: str, user_address: str, balance: str
    ) -> UserBalance:
        """
        Insert or update the current balance.

        Writers are partitioned per chain, so read-then-write needs no lock.
        """
        row = await self.get_by_pk((chain_name, user_address))
        if row is None:
            return await self.create(
                chain_name=chain_name,
                user_address=user_address,
                current_balance=balance,
            )
        row.current_balance = balance
        row.updated_at = utc_now()
        await self.session.flush()
        return row

    async def get_users_page(
        self,
        chain_name: str,
        after: str | None = None,
        limit: int = 500,
    ) -> list[str]:
        """
        Get one page of addresses known on a chain (keyset pagination).

        Args:
            chain_name: Chain name
            after: Last address of the previous page
            limit: Page size

        Returns:
            Addresses in ascending order
        """
        query = select(UserBalance.user_address).where(
            UserBalance.chain_name == chain_name
        )
        if after is not None:
            query = query.where(UserBalance.user_address > after)
        query = query.order_by(UserBalance.user_address.asc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
