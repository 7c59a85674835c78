from enum import Enum
from typing import Dict, FrozenSet


class _CaseInsensitiveEnum(str, Enum):
    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted or member.name.lower() == wanted:
                    return member
        return None


class TradeSide(_CaseInsensitiveEnum):
    BUY = "Buy"
    SELL = "Sell"


class TradeStatus(_CaseInsensitiveEnum):
    PENDING = "Pending"
    EXECUTED = "Executed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def can_transition_to(self, target: "TradeStatus") -> bool:
        """Statuses only move forward: Pending -> Executed | Failed."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: Dict[TradeStatus, FrozenSet[TradeStatus]] = {
    TradeStatus.PENDING: frozenset({TradeStatus.EXECUTED, TradeStatus.FAILED}),
    TradeStatus.EXECUTED: frozenset(),
    TradeStatus.FAILED: frozenset(),
    TradeStatus.CANCELLED: frozenset(),
}
