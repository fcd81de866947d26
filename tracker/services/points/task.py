"""
Points calculation task.

Wire payload of the points task bus: chain, user and an RFC3339 window.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from tracker.utils.datetime_utils import ensure_utc, format_rfc3339, parse_rfc3339
from tracker.utils.exceptions import TaskDecodeError

PAYLOAD_FIELDS = ("chain_name", "user_address", "period_start", "period_end")


@dataclass(frozen=True)
class PointsTask:
    """Request to credit one user on one chain for [period_start, period_end)."""

    chain_name: str
    user_address: str
    period_start: datetime
    period_end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_address", self.user_address.lower())
        object.__setattr__(self, "period_start", ensure_utc(self.period_start))
        object.__setattr__(self, "period_end", ensure_utc(self.period_end))

    def to_payload(self) -> dict[str, str]:
        return {
            "chain_name": self.chain_name,
            "user_address": self.user_address,
            "period_start": format_rfc3339(self.period_start),
            "period_end": format_rfc3339(self.period_end),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PointsTask":
        """
        Parse a bus payload.

        Raises:
            TaskDecodeError: Missing fields, wrong types or bad timestamps
        """
        if not isinstance(payload, Mapping):
            raise TaskDecodeError(f"payload must be an object, got {type(payload).__name__}")

        missing = [field for field in PAYLOAD_FIELDS if field not in payload]
        if missing:
            raise TaskDecodeError(f"payload missing {', '.join(missing)}")
        for field in PAYLOAD_FIELDS:
            if not isinstance(payload[field], str) or not payload[field]:
                raise TaskDecodeError(f"{field} must be a non-empty string")

        try:
            start = parse_rfc3339(payload["period_start"])
            end = parse_rfc3339(payload["period_end"])
        except ValueError as e:
            raise TaskDecodeError(f"bad timestamp: {e}") from e

        return cls(
            chain_name=payload["chain_name"],
            user_address=payload["user_address"],
            period_start=start,
            period_end=end,
        )

    def __str__(self) -> str:
        return (
            f"{self.chain_name}/{self.user_address} "
            f"[{format_rfc3339(self.period_start)}, {format_rfc3339(self.period_end)})"
        )
