"""
ERC20 event decoding.

Decodes raw `eth_getLogs` entries for the tracked token contract and
classifies them into per-address balance deltas.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import event_abi_to_log_topic, to_bytes

from tracker.models.enums import EventType
from tracker.utils.exceptions import LogDecodeError

ZERO_ADDRESS = "0x" + "00" * 20

ERC20_EVENTS_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
            {"indexed": False, "name": "timestamp", "type": "uint256"},
        ],
        "name": "Mint",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "from", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
            {"indexed": False, "name": "timestamp", "type": "uint256"},
        ],
        "name": "Burn",
        "type": "event",
    },
]

# topic0 -> event name
EVENT_TOPICS: dict[bytes, str] = {
    event_abi_to_log_topic(abi): abi["name"] for abi in ERC20_EVENTS_ABI
}
TRANSFER_TOPIC = next(t for t, name in EVENT_TOPICS.items() if name == "Transfer")
MINT_TOPIC = next(t for t, name in EVENT_TOPICS.items() if name == "Mint")
BURN_TOPIC = next(t for t, name in EVENT_TOPICS.items() if name == "Burn")


@dataclass(frozen=True)
class TokenEvent:
    """Decoded ERC20 event."""

    name: str
    from_address: str
    to_address: str
    value: int
    block_number: int
    log_index: int
    tx_hash: str
    embedded_timestamp: int | None = None


@dataclass(frozen=True)
class BalanceDelta:
    """Signed effect of an event on one address."""

    user_address: str
    event_type: EventType
    amount: int

    @property
    def signed_amount(self) -> int:
        return self.amount * self.event_type.sign


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return to_bytes(hexstr=value)
    raise LogDecodeError(f"expected bytes or hex string, got {type(value).__name__}")


def _as_hex(value: Any) -> str:
    raw = _as_bytes(value)
    return "0x" + raw.hex()


def _topic_address(topic: Any) -> str:
    (address,) = decode(["address"], _as_bytes(topic))
    return address.lower()


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise LogDecodeError(f"expected integer, got {type(value).__name__}")


def decode_log(log: Mapping[str, Any]) -> TokenEvent:
    """
    Decode one raw log.

    Args:
        log: Log entry as returned by `eth_getLogs`

    Returns:
        Decoded event

    Raises:
        LogDecodeError: Unknown signature or malformed topics / data
    """
    try:
        topics = [_as_bytes(topic) for topic in log["topics"]]
        if not topics:
            raise LogDecodeError("anonymous log")
        name = EVENT_TOPICS.get(topics[0])
        if name is None:
            raise LogDecodeError(f"unknown event signature {_as_hex(topics[0])}")

        data = _as_bytes(log.get("data") or b"")
        block_number = _as_int(log["blockNumber"])
        log_index = _as_int(log["logIndex"])
        tx_hash = _as_hex(log["transactionHash"])

        if name == "Transfer":
            if len(topics) != 3:
                raise LogDecodeError(f"Transfer with {len(topics)} topics")
            (value,) = decode(["uint256"], data)
            return TokenEvent(
                name=name,
                from_address=_topic_address(topics[1]),
                to_address=_topic_address(topics[2]),
                value=value,
                block_number=block_number,
                log_index=log_index,
                tx_hash=tx_hash,
            )

        # Mint / Burn: the address may be indexed or part of the data
        if len(topics) >= 2:
            address = _topic_address(topics[1])
            value, timestamp = decode(["uint256", "uint256"], data)
        else:
            address, value, timestamp = decode(["address", "uint256", "uint256"], data)
            address = address.lower()

        if name == "Mint":
            from_address, to_address = ZERO_ADDRESS, address
        else:
            from_address, to_address = address, ZERO_ADDRESS
        return TokenEvent(
            name=name,
            from_address=from_address,
            to_address=to_address,
            value=value,
            block_number=block_number,
            log_index=log_index,
            tx_hash=tx_hash,
            embedded_timestamp=timestamp,
        )
    except LogDecodeError:
        raise
    except (DecodingError, KeyError, TypeError, ValueError) as e:
        raise LogDecodeError(f"malformed log: {e}") from e


def classify(event: TokenEvent) -> list[BalanceDelta]:
    """
    Turn an event into balance deltas, debit before credit.

    Transfer(0, to) is a mint, Transfer(from, 0) a burn, anything else
    one transfer_out and one transfer_in. Transfer(0, 0) moves nothing.
    """
    from_zero = event.from_address == ZERO_ADDRESS
    to_zero = event.to_address == ZERO_ADDRESS

    if from_zero and to_zero:
        return []
    if from_zero:
        return [BalanceDelta(event.to_address, EventType.MINT, event.value)]
    if to_zero:
        return [BalanceDelta(event.from_address, EventType.BURN, event.value)]
    return [
        BalanceDelta(event.from_address, EventType.TRANSFER_OUT, event.value),
        BalanceDelta(event.to_address, EventType.TRANSFER_IN, event.value),
    ]


def log_sort_key(log: Mapping[str, Any]) -> tuple[int, int]:
    """Chain order of a raw log."""
    return _as_int(log["blockNumber"]), _as_int(log["logIndex"])
