"""
Event Ledger.

Transactional façade over the repositories. Owns every persisted entity
of the tracker: chain cursors, the balance change log, current balances,
user points and their calculation history.

The ledger is an explicit handle built from a session maker and passed
to every component that needs the store.
"""

from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracker.config.constants import TRACKED_TABLES
from tracker.config.settings import ChainSettings
from tracker.models import (
    BalanceChange,
    Base,
    EventType,
    PointsCalculationHistory,
    UserBalance,
    UserPoints,
)
from tracker.repositories import (
    BalanceChangeRepository,
    ChainStatusRepository,
    PointsHistoryRepository,
    UserBalanceRepository,
    UserPointsRepository,
)
from tracker.utils.datetime_utils import ensure_utc, utc_now
from tracker.utils.db_decorators import store_operation
from tracker.utils.exceptions import (
    Conflict,
    CursorRegressionError,
    translate_store_error,
)


@dataclass(frozen=True)
class TimePeriod:
    """Half-open time window [start, end)."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


@dataclass(frozen=True)
class ChainCursor:
    """Snapshot of a chain_status row."""

    chain_name: str
    last_processed_block: int
    updated_at: datetime


@dataclass(frozen=True)
class NewBalanceChange:
    """A balance change about to be appended."""

    chain_name: str
    user_address: str
    event_type: EventType
    amount: int
    balance_after: int
    block_number: int
    log_index: int
    event_time: datetime
    tx_hash: str


@dataclass(frozen=True)
class PointsCredit:
    """A points delta for one window, committed with its history row."""

    chain_name: str
    user_address: str
    period_start: datetime
    period_end: datetime
    points_added: float


class Ledger:
    """
    Event Ledger over a relational store.

    Every public method runs in its own transaction; no transaction
    outlives a call, so callers never hold one across network I/O.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """
        Initialize ledger.

        Args:
            session_maker: Session factory bound to the store engine
        """
        self._session_maker = session_maker

    # ------------------------------------------------------------------
    # Schema / connectivity
    # ------------------------------------------------------------------

    @store_operation("create_schema")
    async def create_schema(self) -> None:
        """Create all tables if missing (tests and first run; alembic in production)."""
        async with self._session_maker() as session:
            connection = await session.connection()
            await connection.run_sync(Base.metadata.create_all)
            await session.commit()

    @store_operation("ping")
    async def ping(self) -> None:
        """Round-trip to the store; raises StoreUnavailable when unreachable."""
        async with self._session_maker() as session:
            await session.execute(text("SELECT 1"))

    async def check_tables(self) -> dict[str, str | None]:
        """
        Probe every tracker table.

        Returns:
            Mapping table name -> None when accessible, error text otherwise
        """
        results: dict[str, str | None] = {}
        for table in TRACKED_TABLES:
            try:
                async with self._session_maker() as session:
                    await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
                results[table] = None
            except SQLAlchemyError as e:
                results[table] = str(translate_store_error(e, f"check {table}"))
        return results

    # ------------------------------------------------------------------
    # Chain cursors
    # ------------------------------------------------------------------

    @store_operation("init_chain_cursors")
    async def init_chain_cursors(self, chains: Iterable[ChainSettings]) -> None:
        """
        Create a cursor row for every configured chain that has none.

        `start_block` is the first block to scan, so a new cursor points
        at the block before it.
        """
        async with self._session_maker.begin() as session:
            repo = ChainStatusRepository(session)
            for chain in chains:
                initial = max(chain.start_block - 1, 0)
                _, created = await repo.ensure(chain.name, initial)
                if created:
                    logger.info(
                        f"[Ledger] Initialized cursor for {chain.name} "
                        f"at block {initial}"
                    )

    @store_operation("get_last_processed_block")
    async def get_last_processed_block(self, chain_name: str) -> int:
        """Cursor of a chain, 0 when there is no row."""
        async with self._session_maker() as session:
            status = await ChainStatusRepository(session).get_status(chain_name)
            return status.last_processed_block if status else 0

    @store_operation("get_chain_cursor")
    async def get_chain_cursor(self, chain_name: str) -> ChainCursor | None:
        """Cursor row snapshot, None when absent."""
        async with self._session_maker() as session:
            status = await ChainStatusRepository(session).get_status(chain_name)
            if status is None:
                return None
            return ChainCursor(
                chain_name=status.chain_name,
                last_processed_block=status.last_processed_block,
                updated_at=status.updated_at,
            )

    @store_operation("update_last_processed_block")
    async def update_last_processed_block(self, chain_name: str, height: int) -> None:
        """
        Advance the cursor of a chain.

        Raises:
            CursorRegressionError: If height is below the stored cursor
        """
        async with self._session_maker.begin() as session:
            repo = ChainStatusRepository(session)
            status = await repo.get_status(chain_name, for_update=True)
            if status is None:
                await repo.create(chain_name=chain_name, last_processed_block=height)
                return
            if height < status.last_processed_block:
                raise CursorRegressionError(
                    f"{chain_name}: cursor {status.last_processed_block} -> {height}"
                )
            await repo.set_block(status, height)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    @store_operation("append_balance_change")
    async def append_balance_change(self, change: NewBalanceChange) -> None:
        """
        Append a balance change and move the current balance with it.

        Both writes share one transaction.

        Raises:
            Conflict: The (chain, tx_hash, log_index, event_type) row exists
            StoreUnavailable: Transport failure
        """
        async with self._session_maker.begin() as session:
            await BalanceChangeRepository(session).create(
                chain_name=change.chain_name,
                user_address=change.user_address,
                event_type=change.event_type.value,
                amount=str(change.amount),
                balance_after=str(change.balance_after),
                block_number=change.block_number,
                log_index=change.log_index,
                event_time=change.event_time,
                tx_hash=change.tx_hash,
            )
            await UserBalanceRepository(session).upsert(
                change.chain_name, change.user_address, str(change.balance_after)
            )

    @store_operation("get_current_balance")
    async def get_current_balance(self, chain_name: str, user_address: str) -> str:
        """Current balance as a decimal string, "0" when unknown."""
        async with self._session_maker() as session:
            balance = await UserBalanceRepository(session).get_balance(
                chain_name, user_address
            )
            return balance if balance is not None else "0"

    @store_operation("get_balance_changes_in_period")
    async def get_balance_changes_in_period(
        self,
        chain_name: str,
        user_address: str,
        start: datetime,
        end: datetime,
    ) -> list[BalanceChange]:
        """Changes with start <= event_time < end, chronological."""
        async with self._session_maker() as session:
            return await BalanceChangeRepository(session).get_in_period(
                chain_name, user_address, start, end
            )

    @store_operation("get_balance_at")
    async def get_balance_at(
        self, chain_name: str, user_address: str, at: datetime
    ) -> int:
        """Balance in force at `at`: balance_after of the last earlier change, else 0."""
        async with self._session_maker() as session:
            change = await BalanceChangeRepository(session).get_latest_before(
                chain_name, user_address, at
            )
            return int(change.balance_after) if change else 0

    @store_operation("get_latest_balance_change")
    async def get_latest_balance_change(
        self, chain_name: str, user_address: str
    ) -> BalanceChange | None:
        """Last change of an address in chain order."""
        async with self._session_maker() as session:
            return await BalanceChangeRepository(session).get_latest(
                chain_name, user_address
            )

    @store_operation("get_balance_changes_by_tx")
    async def get_balance_changes_by_tx(
        self, chain_name: str, tx_hash: str
    ) -> list[BalanceChange]:
        """All changes recorded for one transaction."""
        async with self._session_maker() as session:
            return list(
                await BalanceChangeRepository(session).get_by_tx(chain_name, tx_hash)
            )

    async def iter_users(
        self, chain_name: str, page_size: int = 500
    ) -> AsyncIterator[str]:
        """
        Lazily iterate every address with a balance row on a chain.

        Pages are read in separate short transactions.
        """
        after: str | None = None
        while True:
            try:
                async with self._session_maker() as session:
                    page = await UserBalanceRepository(session).get_users_page(
                        chain_name, after=after, limit=page_size
                    )
            except SQLAlchemyError as e:
                raise translate_store_error(e, "iter_users") from e
            for address in page:
                yield address
            if len(page) < page_size:
                return
            after = page[-1]

    async def get_users_by_chain(self, chain_name: str) -> list[str]:
        """All addresses on a chain (materialized)."""
        return [address async for address in self.iter_users(chain_name)]

    @store_operation("count_users")
    async def count_users(self, chain_name: str) -> int:
        """Number of addresses with a balance row on a chain."""
        async with self._session_maker() as session:
            return await UserBalanceRepository(session).count(chain_name=chain_name)

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    @store_operation("get_user_points")
    async def get_user_points(
        self, chain_name: str, user_address: str
    ) -> UserPoints | None:
        """Points row of a user."""
        async with self._session_maker() as session:
            return await UserPointsRepository(session).get_points(chain_name, user_address)

    async def get_last_calculated_at(
        self, chain_name: str, user_address: str
    ) -> datetime | None:
        """End of the latest credited window, None for a user never credited."""
        points = await self.get_user_points(chain_name, user_address)
        return points.last_calculated_at if points else None

    @store_operation("get_last_calculated_map")
    async def get_last_calculated_map(self, chain_name: str) -> dict[str, datetime]:
        """last_calculated_at per user with points on a chain."""
        async with self._session_maker() as session:
            return await UserPointsRepository(session).get_last_calculated_map(chain_name)

    @store_operation("has_points_calculated")
    async def has_points_calculated(
        self,
        chain_name: str,
        user_address: str,
        start: datetime,
        end: datetime,
    ) -> bool:
        """True iff any credited window intersects [start, end)."""
        async with self._session_maker() as session:
            return await PointsHistoryRepository(session).has_overlap(
                chain_name, user_address, start, end
            )

    @store_operation("get_missing_periods")
    async def get_missing_periods(
        self,
        chain_name: str,
        user_address: str,
        start: datetime,
        end: datetime,
        step: timedelta,
    ) -> list[TimePeriod]:
        """
        Slices of [start, end) of length `step` that no credited window touches.

        Args:
            chain_name: Chain name
            user_address: Address
            start: Window start
            end: Window end
            step: Slice length

        Returns:
            Uncredited slices in chronological order
        """
        async with self._session_maker() as session:
            windows = await PointsHistoryRepository(session).get_windows(
                chain_name, user_address, start, end
            )

        missing: list[TimePeriod] = []
        current = start
        while current < end:
            slice_end = min(current + step, end)
            credited = any(
                w_start < slice_end and w_end > current for w_start, w_end in windows
            )
            if not credited:
                missing.append(TimePeriod(current, slice_end))
            current = slice_end
        return missing

    @store_operation("commit_points")
    async def commit_points(self, credit: PointsCredit) -> float:
        """
        Credit points for one window.

        Upserts UserPoints and appends the history row in one transaction.
        The overlap probe is repeated under the points row lock.

        Returns:
            New total points

        Raises:
            Conflict: The window (or part of it) was credited concurrently
        """
        async with self._session_maker.begin() as session:
            points_repo = UserPointsRepository(session)
            history_repo = PointsHistoryRepository(session)

            row = await points_repo.get_points(
                credit.chain_name, credit.user_address, for_update=True
            )
            if await history_repo.has_overlap(
                credit.chain_name,
                credit.user_address,
                credit.period_start,
                credit.period_end,
            ):
                raise Conflict(
                    f"{credit.chain_name}/{credit.user_address}: window "
                    f"{TimePeriod(credit.period_start, credit.period_end)} already credited"
                )

            row = await points_repo.credit(
                row,
                credit.chain_name,
                credit.user_address,
                credit.points_added,
                credit.period_end,
            )
            await history_repo.create(
                chain_name=credit.chain_name,
                user_address=credit.user_address,
                period_start=credit.period_start,
                period_end=credit.period_end,
                points_added=credit.points_added,
                total_points=row.total_points,
                calculated_at=utc_now(),
            )
            return row.total_points

    @store_operation("get_points_history")
    async def get_points_history(
        self, chain_name: str, user_address: str
    ) -> list[PointsCalculationHistory]:
        """Credited windows of a user, ordered by start."""
        async with self._session_maker() as session:
            return await PointsHistoryRepository(session).get_history(
                chain_name, user_address
            )

    @store_operation("get_points_lag")
    async def get_points_lag(
        self, chain_name: str, now: datetime, default_lookback: timedelta
    ) -> dict[str, float]:
        """
        Hours since last credit for every user on a chain.

        Users never credited are treated as credited `default_lookback` ago.
        """
        async with self._session_maker() as session:
            last_calc = await UserPointsRepository(session).get_last_calculated_map(
                chain_name
            )
            total = await session.execute(
                select(func.count()).select_from(UserBalance).where(
                    UserBalance.chain_name == chain_name
                )
            )
            user_count = total.scalar() or 0

        now = ensure_utc(now)
        lag = {
            address: (now - ensure_utc(last)).total_seconds() / 3600
            for address, last in last_calc.items()
        }
        if user_count > len(lag):
            async for address in self.iter_users(chain_name):
                if address not in lag:
                    lag[address] = default_lookback.total_seconds() / 3600
        return lag
