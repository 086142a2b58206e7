# app/signals/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

# chat_id -> message_id of every delivered copy of a signal message
NotificationHandle = Dict[str, int]


class PositionStatus(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"


@dataclass(frozen=True)
class IndicatorSample:
    symbol: str
    short_score: float
    long_score: float
    price: float
    observed_at: datetime


@dataclass(frozen=True)
class ReferenceSnapshot:
    price: Optional[float] = None
    change: Optional[float] = None  # % vs previous fetch
    change_30m: Optional[float] = None  # % vs oldest sample >= 30 minutes old

    @property
    def available(self) -> bool:
        return self.price is not None


@dataclass
class Position:
    symbol: str
    status: PositionStatus = PositionStatus.IDLE
    entry_prices: List[float] = field(default_factory=list)  # most recent first
    sell_target: Optional[float] = None
    bottom_price: Optional[float] = None
    opened_at: Optional[datetime] = None
    notification_handle: NotificationHandle = field(default_factory=dict)
    reference_price_at_open: Optional[float] = None

    @property
    def last_entry(self) -> Optional[float]:
        return self.entry_prices[0] if self.entry_prices else None

    def observe(self, price: float) -> None:
        if self.bottom_price is None or price < self.bottom_price:
            self.bottom_price = price

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "status": self.status.value,
            "entry_prices": list(self.entry_prices),
            "sell_target": self.sell_target,
            "bottom_price": self.bottom_price,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "reference_price_at_open": self.reference_price_at_open,
            "notified_chats": sorted(self.notification_handle),
        }


@dataclass(frozen=True)
class ClosedSignal:
    symbol: str
    entry_prices: List[float]
    sell_price: float
    duration: str
    bottom_price: float
    percentage_drop: float
    reference_change: Optional[float]
    reference_change_30m: Optional[float]
    closed_at: datetime


@dataclass(frozen=True)
class SweepResult:
    symbol: str
    action: str  # skipped | sampled | opened | averaged | cooldown | held | closed
    price: Optional[float] = None
    reason: str = ""
    sample: Optional[IndicatorSample] = None
