"""
Chain Listener.

Polls one chain, walks confirmed block ranges, decodes ERC20 logs into
balance changes and advances the chain cursor.
"""

import asyncio
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from loguru import logger

from tracker.config.constants import CONFIRMATION_DEPTH
from tracker.config.settings import ChainSettings
from tracker.services.chain.events import (
    BalanceDelta,
    TokenEvent,
    classify,
    decode_log,
    log_sort_key,
)
from tracker.services.ledger import Ledger, NewBalanceChange
from tracker.utils.datetime_utils import utc_now
from tracker.utils.exceptions import (
    Conflict,
    CursorRegressionError,
    FatalListenerError,
    LogDecodeError,
    TransientError,
)


class RpcClient(Protocol):
    """Chain calls consumed by the listener."""

    async def block_number(self) -> int: ...

    async def chain_id(self) -> int: ...

    async def get_logs(
        self, from_block: int, to_block: int, address: str | None = None
    ) -> list[Mapping[str, Any]]: ...

    async def get_block_timestamp(self, block_number: int) -> int | None: ...


class ChainListener:
    """
    Listener of one chain.

    The only writer of the chain's cursor, balance changes and current
    balances. Blocks within CONFIRMATION_DEPTH of the head are never read.
    """

    def __init__(
        self,
        chain: ChainSettings,
        client: RpcClient,
        ledger: Ledger,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize listener.

        Args:
            chain: Chain settings
            client: RPC client of the chain
            ledger: Event ledger
            clock: Wall-clock source for blocks without a timestamp
        """
        self.chain = chain
        self.client = client
        self.ledger = ledger
        self.clock = clock
        self.last_block: int | None = None
        self.invariant_violations = 0
        self._tag = f"[Listener:{chain.name}]"

    @property
    def name(self) -> str:
        return self.chain.name

    async def start(self) -> int:
        """
        Verify the node and load the watermark.

        Returns:
            Last block already processed

        Raises:
            FatalListenerError: The node serves a different chain
            RpcError: Node unreachable (retried by run)
        """
        chain_id = await self.client.chain_id()
        if chain_id != self.chain.chain_id:
            raise FatalListenerError(
                f"{self._tag} RPC reports chain id {chain_id}, "
                f"configured {self.chain.chain_id}"
            )

        stored = await self.ledger.get_last_processed_block(self.chain.name)
        self.last_block = max(stored, self.chain.start_block - 1, 0)
        logger.info(f"{self._tag} Starting after block {self.last_block}")
        return self.last_block

    async def poll_once(self, stop_event: asyncio.Event | None = None) -> int:
        """
        Process every confirmed block past the watermark.

        The range is walked in chunks of max_block_range; the cursor moves
        after each fully appended chunk.

        Returns:
            Number of balance changes appended
        """
        last_block = self.last_block
        if last_block is None:
            last_block = await self.start()

        head = await self.client.block_number()
        target = head - CONFIRMATION_DEPTH
        if target <= last_block:
            logger.debug(f"{self._tag} Head {head}, nothing confirmed past {last_block}")
            return 0

        appended = 0
        from_block = last_block + 1
        while from_block <= target:
            if stop_event is not None and stop_event.is_set():
                break
            to_block = min(from_block + self.chain.max_block_range - 1, target)
            logs = await self.client.get_logs(
                from_block, to_block, self.chain.contract_address
            )
            appended += await self.process_logs(logs)
            await self._advance(to_block)
            from_block = to_block + 1

        logger.info(
            f"{self._tag} Processed up to block {self.last_block} "
            f"(head {head}): {appended} change(s)"
        )
        return appended

    async def process_logs(self, logs: list[Mapping[str, Any]]) -> int:
        """
        Decode and append a batch of logs in chain order.

        Undecodable logs are skipped. RPC and store failures propagate
        and abandon the rest of the batch.

        Returns:
            Number of balance changes appended
        """
        appended = 0
        for log in sorted(logs, key=log_sort_key):
            try:
                event = decode_log(log)
            except LogDecodeError as e:
                logger.warning(
                    f"{self._tag} Skipping log {log.get('transactionHash')!r}"
                    f"#{log.get('logIndex')}: {e}"
                )
                continue

            deltas = classify(event)
            if not deltas:
                continue
            event_time = await self._event_time(event)
            for delta in deltas:
                if await self._append(event, delta, event_time):
                    appended += 1
        return appended

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Poll until stop_event is set.

        Transient failures are logged and retried on the next tick.

        Raises:
            FatalListenerError: The listener cannot continue
        """
        logger.info(
            f"{self._tag} Listening to {self.chain.contract_address} "
            f"every {self.chain.poll_interval}s"
        )
        while not stop_event.is_set():
            try:
                await self.poll_once(stop_event)
            except TransientError as e:
                logger.warning(f"{self._tag} Tick failed, retrying next tick: {e}")
            except CursorRegressionError as e:
                self.invariant_violations += 1
                logger.error(f"{self._tag} {e}; reloading cursor")
                self.last_block = None

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.chain.poll_interval)
            except TimeoutError:
                pass
        logger.info(f"{self._tag} Stopped at block {self.last_block}")

    async def _event_time(self, event: TokenEvent) -> datetime:
        timestamp = await self.client.get_block_timestamp(event.block_number)
        if timestamp is None:
            timestamp = event.embedded_timestamp
        if timestamp is None:
            return self.clock()
        return datetime.fromtimestamp(timestamp, UTC)

    async def _append(
        self, event: TokenEvent, delta: BalanceDelta, event_time: datetime
    ) -> bool:
        current = int(
            await self.ledger.get_current_balance(self.chain.name, delta.user_address)
        )
        balance_after = current + delta.signed_amount

        try:
            await self.ledger.append_balance_change(
                NewBalanceChange(
                    chain_name=self.chain.name,
                    user_address=delta.user_address,
                    event_type=delta.event_type,
                    amount=delta.amount,
                    balance_after=balance_after,
                    block_number=event.block_number,
                    log_index=event.log_index,
                    event_time=event_time,
                    tx_hash=event.tx_hash,
                )
            )
        except Conflict:
            logger.debug(
                f"{self._tag} Already recorded {event.tx_hash}#{event.log_index} "
                f"{delta.event_type}"
            )
            return False

        # Persisted as observed; remediation is a replay, not a correction
        if balance_after < 0:
            self.invariant_violations += 1
            logger.error(
                f"{self._tag} Negative balance for {delta.user_address}: "
                f"{current} {delta.event_type} {delta.amount} -> {balance_after} "
                f"(tx {event.tx_hash}#{event.log_index}, block {event.block_number})"
            )
        return True

    async def _advance(self, block: int) -> None:
        await self.ledger.update_last_processed_block(self.chain.name, block)
        self.last_block = block
