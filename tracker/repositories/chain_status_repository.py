"""
Chain status repository.

Data access layer for per-chain ingestion cursors.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models.chain_status import ChainStatus
from tracker.repositories.base import BaseRepository
from tracker.utils.datetime_utils import utc_now


class ChainStatusRepository(BaseRepository[ChainStatus]):
    """Repository for chain cursors."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(ChainStatus, session)

    async def get_status(
        self, chain_name: str, for_update: bool = False
    ) -> ChainStatus | None:
        """Get cursor row of a chain."""
        return await self.get_by_pk(chain_name, for_update=for_update)

    async def ensure(self, chain_name: str, initial_block: int) -> tuple[ChainStatus, bool]:
        """
        Create the cursor row if absent.

        Args:
            chain_name: Chain name
            initial_block: Cursor value for a new row

        Returns:
            Tuple of (row, created)
        """
        status = await self.get_status(chain_name)
        if status is not None:
            return status, False
        status = await self.create(
            chain_name=chain_name,
            last_processed_block=initial_block,
        )
        return status, True

    async def set_block(self, status: ChainStatus, block: int) -> ChainStatus:
        """Move the cursor; monotonicity is checked by the caller."""
        status.last_processed_block = block
        status.updated_at = utc_now()
        await self.session.flush()
        return status
