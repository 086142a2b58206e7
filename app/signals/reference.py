from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Deque, Optional

from app.market.snapshot import DataUnavailable, MarketSnapshotProvider
from app.signals.models import ReferenceSnapshot

log = logging.getLogger("rsiwatch.reference")

RETENTION = timedelta(minutes=31)
LOOKBACK = timedelta(minutes=30)


def pct_change(current: float, previous: float) -> Optional[float]:
    if not previous:
        return None
    return round((current - previous) / previous * 100, 2)


@dataclass(frozen=True)
class PriceSample:
    price: float
    observed_at: datetime


class ReferenceAssetTracker:
    """
    Keeps the last 31 minutes of reference-asset prices (oldest first) and
    derives the change since the previous fetch and over the last 30 minutes.
    """

    def __init__(self, provider: MarketSnapshotProvider):
        self.provider = provider
        self.history: Deque[PriceSample] = deque()
        self.last_price: Optional[float] = None
        self._latest = ReferenceSnapshot()
        self._lock = asyncio.Lock()

    @property
    def latest(self) -> ReferenceSnapshot:
        """Snapshot from the most recent fetch, without touching the buffer."""
        return self._latest

    async def fetch(self, now: Optional[datetime] = None) -> ReferenceSnapshot:
        price = await asyncio.to_thread(self.provider.get_reference_price)
        async with self._lock:
            self._latest = self.record(price, now or datetime.now(timezone.utc))
            return self._latest

    def record(self, price, now: datetime) -> ReferenceSnapshot:
        if isinstance(price, DataUnavailable):
            log.info("reference price unavailable: %s", price.reason)
            return ReferenceSnapshot()

        self.history.append(PriceSample(price=price, observed_at=now))

        change = None
        if self.last_price:
            change = pct_change(price, self.last_price)

        # comparator is picked before this fetch trims the buffer
        change_30m = None
        old = self.sample_at_least(LOOKBACK, now)
        if old is not None:
            change_30m = pct_change(price, old.price)

        self._evict(now)

        self.last_price = price
        return ReferenceSnapshot(price=price, change=change, change_30m=change_30m)

    def sample_at_least(self, age: timedelta, now: datetime) -> Optional[PriceSample]:
        """Oldest retained sample whose age is >= ``age``."""
        if self.history and self.history[0].observed_at <= now - age:
            return self.history[0]
        return None

    def _evict(self, now: datetime) -> None:
        cutoff = now - RETENTION
        while self.history and self.history[0].observed_at < cutoff:
            self.history.popleft()
