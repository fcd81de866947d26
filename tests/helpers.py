"""Test doubles and builders shared by the test suite."""

from datetime import UTC, datetime

from eth_abi import encode

from tracker.services.chain.events import BURN_TOPIC, MINT_TOPIC, TRANSFER_TOPIC

TOKEN_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
ALICE = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
BOB = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"
CAROL = "0x90f79bf6eb2c4f870365e785982e1f101e93b906"

ONE_TOKEN = 10**18

# 2026-01-01T00:00:00Z, block N is mined at GENESIS_TS + 12 * N
GENESIS_TS = 1_767_225_600
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def block_time(block_number: int) -> datetime:
    return datetime.fromtimestamp(GENESIS_TS + 12 * block_number, UTC)


class LogFactory:
    """Builds raw eth_getLogs entries for the test token."""

    def __init__(self) -> None:
        self._tx = 0

    def _next_tx(self) -> bytes:
        self._tx += 1
        return self._tx.to_bytes(32, "big")

    @staticmethod
    def _topic(address: str) -> bytes:
        return encode(["address"], [address])

    def _log(self, topics, data, block, log_index, tx_hash) -> dict:
        return {
            "address": TOKEN_ADDRESS,
            "topics": topics,
            "data": data,
            "blockNumber": block,
            "logIndex": log_index,
            "transactionHash": tx_hash or self._next_tx(),
        }

    def transfer(self, sender, recipient, value, block, log_index=0, tx_hash=None) -> dict:
        return self._log(
            [TRANSFER_TOPIC, self._topic(sender), self._topic(recipient)],
            encode(["uint256"], [value]),
            block, log_index, tx_hash,
        )

    def mint(self, recipient, value, block, log_index=0, timestamp=0, tx_hash=None) -> dict:
        return self._log(
            [MINT_TOPIC],
            encode(["address", "uint256", "uint256"], [recipient, value, timestamp]),
            block, log_index, tx_hash,
        )

    def burn(self, holder, value, block, log_index=0, timestamp=0, tx_hash=None) -> dict:
        return self._log(
            [BURN_TOPIC, self._topic(holder)],
            encode(["uint256", "uint256"], [value, timestamp]),
            block, log_index, tx_hash,
        )

    def unknown(self, block, log_index=0) -> dict:
        return self._log([b"\x01" * 32], b"", block, log_index, None)


class FakeChainClient:
    """In-memory chain: a head, a log list and deterministic block times."""

    def __init__(self, chain_id: int = 1337) -> None:
        self._chain_id = chain_id
        self.head = 0
        self.logs: list[dict] = []
        self.injected: list[dict] = []
        self.fail_with: Exception | None = None
        self.calls: list[tuple[int, int]] = []

    async def chain_id(self) -> int:
        return self._chain_id

    async def block_number(self) -> int:
        if self.fail_with:
            raise self.fail_with
        return self.head

    async def get_logs(self, from_block, to_block, address=None) -> list[dict]:
        if self.fail_with:
            raise self.fail_with
        self.calls.append((from_block, to_block))
        found = [log for log in self.logs if from_block <= log["blockNumber"] <= to_block]
        # Late deliveries are returned once regardless of range
        found.extend(self.injected)
        self.injected = []
        return found

    async def get_block_timestamp(self, block_number: int) -> int | None:
        return GENESIS_TS + 12 * block_number


class RecordingBus:
    """Task publisher that keeps everything in a list."""

    def __init__(self) -> None:
        self.tasks = []

    async def publish(self, task) -> None:
        self.tasks.append(task)


