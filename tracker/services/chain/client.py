"""
Chain RPC client.

Thin adapter over web3 `AsyncWeb3` exposing the three calls the listener
needs. Every call runs under a timeout and raises the tracker's RPC
errors, never web3 / aiohttp ones.
"""

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Mapping
from typing import Any, TypeVar

from loguru import logger
from web3 import AsyncWeb3
from web3.providers import AsyncHTTPProvider

from tracker.config.constants import BLOCK_TIMESTAMP_CACHE_SIZE, RPC_TIMEOUT
from tracker.config.settings import ChainSettings
from tracker.utils.exceptions import RpcError, RpcTimeoutError

T = TypeVar("T")


async def with_timeout(
    coro: Awaitable[T],
    timeout: float = RPC_TIMEOUT,
    operation_name: str = "RPC call",
) -> T:
    """
    Execute an RPC coroutine with a timeout.

    Args:
        coro: Coroutine to execute
        timeout: Timeout in seconds
        operation_name: Operation name for messages

    Returns:
        Result of the coroutine

    Raises:
        RpcTimeoutError: If the call times out
        RpcError: If the call fails
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except TimeoutError as e:
        raise RpcTimeoutError(f"{operation_name} timed out after {timeout}s") from e
    except asyncio.CancelledError:
        raise
    except Exception as e:
        # web3 surfaces provider, HTTP and JSON-RPC failures under many types
        raise RpcError(f"{operation_name} failed: {type(e).__name__}: {e}") from e


class ChainClient:
    """RPC client of one chain."""

    def __init__(
        self,
        chain: ChainSettings,
        web3: AsyncWeb3 | None = None,
        timeout: float = RPC_TIMEOUT,
        cache_size: int = BLOCK_TIMESTAMP_CACHE_SIZE,
    ) -> None:
        """
        Initialize client.

        Args:
            chain: Chain settings
            web3: Preconfigured AsyncWeb3 (built from rpc_url when omitted)
            timeout: Per-call timeout in seconds
            cache_size: Number of block timestamps kept in memory
        """
        self.chain = chain
        self.web3 = web3 or AsyncWeb3(AsyncHTTPProvider(chain.rpc_url))
        self.timeout = timeout
        self._cache_size = cache_size
        self._timestamps: OrderedDict[int, int] = OrderedDict()

    async def block_number(self) -> int:
        """Current chain head."""
        return await with_timeout(
            self.web3.eth.block_number,
            self.timeout,
            f"[{self.chain.name}] eth_blockNumber",
        )

    async def chain_id(self) -> int:
        """Chain id reported by the node."""
        return await with_timeout(
            self.web3.eth.chain_id,
            self.timeout,
            f"[{self.chain.name}] eth_chainId",
        )

    async def get_logs(
        self, from_block: int, to_block: int, address: str | None = None
    ) -> list[Mapping[str, Any]]:
        """
        Logs in [from_block, to_block], optionally filtered by emitter.

        Args:
            from_block: First block (inclusive)
            to_block: Last block (inclusive)
            address: Contract address

        Returns:
            Raw log entries
        """
        params: dict[str, Any] = {"fromBlock": from_block, "toBlock": to_block}
        if address:
            params["address"] = AsyncWeb3.to_checksum_address(address)
        logs = await with_timeout(
            self.web3.eth.get_logs(params),
            self.timeout,
            f"[{self.chain.name}] eth_getLogs {from_block}-{to_block}",
        )
        return list(logs)

    async def get_block_timestamp(self, block_number: int) -> int | None:
        """
        Unix timestamp of a block, cached.

        Returns:
            Timestamp or None if the node returned a block without one
        """
        cached = self._timestamps.get(block_number)
        if cached is not None:
            self._timestamps.move_to_end(block_number)
            return cached

        block = await with_timeout(
            self.web3.eth.get_block(block_number),
            self.timeout,
            f"[{self.chain.name}] eth_getBlockByNumber {block_number}",
        )
        timestamp = block.get("timestamp") if block else None
        if timestamp is None:
            logger.warning(f"[{self.chain.name}] Block {block_number} has no timestamp")
            return None

        self._timestamps[block_number] = int(timestamp)
        if len(self._timestamps) > self._cache_size:
            self._timestamps.popitem(last=False)
        return int(timestamp)
