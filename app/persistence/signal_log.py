# app/persistence/signal_log.py
from __future__ import annotations

import csv
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from app.signals.models import IndicatorSample

log = logging.getLogger("rsiwatch.signal_log")

SAMPLE_HEADER = ["Timestamp", "Symbol", "RSI Long", "RSI Short", "Current Price"]
CLOSED_HEADER = [
    "Timestamp",
    "Symbol",
    "Entry Prices",
    "Sell Price",
    "Duration",
    "Bottom Price",
    "Percentage Drop",
    "Reference Change",
    "Reference 30m Change",
]


def fmt_ts(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S")


def _cell(value) -> str:
    return "" if value is None else str(value)


class SignalLogger:
    """
    Append-only CSV history of indicator samples and closed signals.
    Header rows are written once, when the file does not exist yet.
    Write failures are logged and never reach the trading loop.
    """

    def __init__(
        self,
        samples_path: str = "data/rsi_data.csv",
        closed_path: str = "data/buy_signals.csv",
    ):
        self.samples_path = Path(samples_path)
        self.closed_path = Path(closed_path)
        self._lock = threading.Lock()

        self._init_file(self.samples_path, SAMPLE_HEADER)
        self._init_file(self.closed_path, CLOSED_HEADER)

    def _init_file(self, path: Path, header: List[str]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                with path.open("w", newline="", encoding="utf-8") as f:
                    csv.writer(f).writerow(header)
        except OSError as e:
            log.error("cannot initialize %s: %s", path, e)

    def _append(self, path: Path, row: Sequence) -> bool:
        try:
            with self._lock, path.open("a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow([_cell(v) for v in row])
        except OSError as e:
            log.error("write to %s failed: %s", path, e)
            return False
        return True

    def append_sample(self, sample: IndicatorSample) -> bool:
        ok = self._append(
            self.samples_path,
            [
                fmt_ts(sample.observed_at),
                sample.symbol,
                sample.long_score,
                sample.short_score,
                sample.price,
            ],
        )
        if ok:
            log.debug("logged rsi sample for %s", sample.symbol)
        return ok

    def append_closed_signal(
        self,
        symbol: str,
        entry_prices: Sequence[float],
        sell_price: float,
        duration: str,
        bottom_price: float,
        percentage_drop: float,
        reference_change: Optional[float],
        reference_change_30m: Optional[float],
        timestamp: datetime,
    ) -> bool:
        ok = self._append(
            self.closed_path,
            [
                fmt_ts(timestamp),
                symbol,
                ";".join(str(p) for p in entry_prices),
                sell_price,
                duration,
                bottom_price,
                f"{percentage_drop:.2f}",
                reference_change,
                reference_change_30m,
            ],
        )
        if ok:
            log.info("logged closed signal for %s", symbol)
        return ok
