"""
Model enumerations.
"""

from enum import StrEnum


class EventType(StrEnum):
    """Balance change classification."""

    MINT = "mint"
    BURN = "burn"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"

    @property
    def sign(self) -> int:
        """+1 for credits, -1 for debits."""
        if self in (EventType.MINT, EventType.TRANSFER_IN):
            return 1
        return -1
