from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Union

from app.exchange.binance.client import BinanceSpotClient, kline_closes

log = logging.getLogger("rsiwatch.market")


@dataclass(frozen=True)
class DataUnavailable:
    """Market data could not be obtained this cycle; callers skip and retry later."""

    reason: str

    def __bool__(self) -> bool:
        return False


Closes = Union[List[float], DataUnavailable]
Price = Union[float, DataUnavailable]


class MarketSnapshotProvider:
    """
    Thin wrapper over the Binance client that never raises.
    Every failure comes back as a DataUnavailable value.
    """

    def __init__(self, client: BinanceSpotClient, reference_symbol: str = "BTCUSDT"):
        self.client = client
        self.reference_symbol = reference_symbol.upper()

    def get_closes(self, symbol: str, interval: str, count: int) -> Closes:
        try:
            closes = kline_closes(self.client.klines(symbol, interval=interval, limit=count))
        except Exception as e:
            log.warning("klines %s %s failed: %s", symbol, interval, e)
            return DataUnavailable(f"klines_failed: {e}")

        if len(closes) < count:
            return DataUnavailable(f"not_enough_data: {len(closes)}/{count}")
        return closes

    def get_reference_price(self) -> Price:
        try:
            return float(self.client.last_price(self.reference_symbol))
        except Exception as e:
            log.warning("price %s failed: %s", self.reference_symbol, e)
            return DataUnavailable(f"price_failed: {e}")
