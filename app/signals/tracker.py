from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from app.core.config import Settings
from app.market.snapshot import Closes, DataUnavailable
from app.notify.telegram import SignalNotifier
from app.persistence.signal_log import SignalLogger
from app.signals.gate import NotificationGate
from app.signals.messages import fmt_duration, render_open, render_target_achieved
from app.signals.models import (
    ClosedSignal,
    IndicatorSample,
    Position,
    PositionStatus,
    ReferenceSnapshot,
    SweepResult,
)
from app.signals.reference import pct_change
from app.strategy.indicators import rsi

log = logging.getLogger("rsiwatch.tracker")


@dataclass(frozen=True)
class TrackerConfig:
    short_interval: str = "1m"
    long_interval: str = "15m"
    rsi_period: int = 14
    long_rsi_max: float = 10.0
    short_rsi_min: float = 30.0
    sell_target_multiplier: float = 1.011
    averaging_down: bool = True
    cooldown: timedelta = timedelta(minutes=30)
    reference_name: str = "BTC"

    @classmethod
    def from_settings(cls, s: Settings) -> "TrackerConfig":
        ref = s.REFERENCE_SYMBOL
        if ref.endswith(s.QUOTE_ASSET) and len(ref) > len(s.QUOTE_ASSET):
            ref = ref[: -len(s.QUOTE_ASSET)]
        return cls(
            short_interval=s.SHORT_INTERVAL,
            long_interval=s.LONG_INTERVAL,
            rsi_period=s.RSI_PERIOD,
            long_rsi_max=s.LONG_RSI_MAX,
            short_rsi_min=s.SHORT_RSI_MIN,
            sell_target_multiplier=s.sell_target_multiplier,
            averaging_down=s.AVERAGING_DOWN_ENABLED,
            cooldown=timedelta(minutes=s.COOLDOWN_MINUTES),
            reference_name=ref,
        )


class PositionStore:
    """
    Open positions keyed by symbol. A symbol with no entry is IDLE.
    Every read-modify-write of a symbol's position must happen under
    ``guard(symbol)``.
    """

    def __init__(self) -> None:
        self._positions: Dict[str, Position] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def guard(self, symbol: str):
        async with self._locks[symbol]:
            yield

    def get(self, symbol: str) -> Optional[Position]:
        return self._positions.get(symbol)

    def put(self, position: Position) -> None:
        self._positions[position.symbol] = position

    def remove(self, symbol: str) -> Optional[Position]:
        return self._positions.pop(symbol, None)

    def active_symbols(self) -> List[str]:
        return list(self._positions)

    def positions(self) -> List[Position]:
        return list(self._positions.values())


class PositionTracker:
    """
    Signal lifecycle per symbol:

        IDLE --(raise condition + cooldown ok)--> ACTIVE
        ACTIVE --(lower dip below target)--> ACTIVE (entry prepended)
        ACTIVE --(price >= sell target)--> IDLE (closed, logged)
    """

    def __init__(
        self,
        config: TrackerConfig,
        notifier: SignalNotifier,
        signal_log: SignalLogger,
        store: Optional[PositionStore] = None,
        gate: Optional[NotificationGate] = None,
    ):
        self.config = config
        self.notifier = notifier
        self.signal_log = signal_log
        self.store = store or PositionStore()
        self.gate = gate or NotificationGate(config.cooldown)

    def sell_target_for(self, entry_price: float) -> float:
        return round(entry_price * self.config.sell_target_multiplier, 8)

    def should_raise(self, long_score: float, short_score: float) -> bool:
        return (
            long_score < self.config.long_rsi_max
            and short_score > self.config.short_rsi_min
        )

    # ---------------- DETECTION SWEEP ----------------

    async def detect(
        self,
        symbol: str,
        short_closes: Closes,
        long_closes: Closes,
        snapshot: Optional[ReferenceSnapshot] = None,
        now: Optional[datetime] = None,
    ) -> SweepResult:
        if isinstance(short_closes, DataUnavailable) or isinstance(
            long_closes, DataUnavailable
        ):
            return SweepResult(symbol, "skipped", reason="data_unavailable")

        long_score = rsi(long_closes, self.config.rsi_period)
        short_score = rsi(short_closes, self.config.rsi_period)
        if long_score is None or short_score is None:
            return SweepResult(symbol, "skipped", reason="not_enough_data")

        price = float(short_closes[-1])
        now = now or datetime.now(timezone.utc)
        snapshot = snapshot or ReferenceSnapshot()

        sample = IndicatorSample(
            symbol=symbol,
            short_score=short_score,
            long_score=long_score,
            price=price,
            observed_at=now,
        )
        await asyncio.to_thread(self.signal_log.append_sample, sample)

        async with self.store.guard(symbol):
            position = self.store.get(symbol)
            if position is not None:
                return await self._average_down(position, sample, snapshot)

            if not self.should_raise(long_score, short_score):
                return SweepResult(symbol, "sampled", price=price, sample=sample)

            if not self.gate.may_notify(symbol, now):
                log.info("%s qualifies but is cooling down", symbol)
                return SweepResult(symbol, "cooldown", price=price, sample=sample)

            self.gate.record(symbol, now)
            position = Position(
                symbol=symbol,
                status=PositionStatus.ACTIVE,
                entry_prices=[price],
                sell_target=self.sell_target_for(price),
                bottom_price=price,
                opened_at=now,
                reference_price_at_open=snapshot.price,
            )
            self.store.put(position)

            text = render_open(
                position,
                self.config.short_interval,
                self.config.reference_name,
                snapshot,
            )
            position.notification_handle = await asyncio.to_thread(
                self.notifier.announce, text
            )
            if not position.notification_handle:
                log.warning("%s signal opened but no notification was delivered", symbol)

            log.info(
                "%s signal opened at %s (long rsi %.2f, short rsi %.2f, target %s)",
                symbol,
                price,
                long_score,
                short_score,
                position.sell_target,
            )
            return SweepResult(symbol, "opened", price=price, sample=sample)

    async def _average_down(
        self, position: Position, sample: IndicatorSample, snapshot: ReferenceSnapshot
    ) -> SweepResult:
        price = sample.price
        if not self.config.averaging_down:
            return SweepResult(position.symbol, "held", price=price, sample=sample)

        if price >= position.sell_target or price >= position.last_entry:
            return SweepResult(position.symbol, "held", price=price, sample=sample)

        position.entry_prices.insert(0, price)
        position.observe(price)
        log.info(
            "%s averaged down at %s (%d entries)",
            position.symbol,
            price,
            len(position.entry_prices),
        )

        if position.notification_handle:
            text = render_open(
                position,
                self.config.short_interval,
                self.config.reference_name,
                snapshot,
            )
            await asyncio.to_thread(
                self.notifier.revise, position.notification_handle, text
            )
        return SweepResult(position.symbol, "averaged", price=price, sample=sample)

    # ---------------- TARGET-CHECK SWEEP ----------------

    async def check_target(
        self,
        symbol: str,
        short_closes: Closes,
        snapshot: Optional[ReferenceSnapshot] = None,
        now: Optional[datetime] = None,
    ) -> SweepResult:
        if isinstance(short_closes, DataUnavailable) or not short_closes:
            return SweepResult(symbol, "skipped", reason="data_unavailable")

        price = float(short_closes[-1])
        now = now or datetime.now(timezone.utc)
        snapshot = snapshot or ReferenceSnapshot()

        async with self.store.guard(symbol):
            position = self.store.get(symbol)
            if position is None:
                return SweepResult(symbol, "skipped", reason="no_position")

            position.observe(price)
            if price < position.sell_target:
                return SweepResult(symbol, "held", price=price)

            closed = self.close_record(position, snapshot, now)
            if position.notification_handle:
                text = render_target_achieved(
                    position,
                    closed.duration,
                    closed.percentage_drop,
                    self.config.reference_name,
                    closed.reference_change,
                    closed.reference_change_30m,
                )
                await asyncio.to_thread(
                    self.notifier.revise, position.notification_handle, text
                )

            await asyncio.to_thread(
                self.signal_log.append_closed_signal,
                closed.symbol,
                closed.entry_prices,
                closed.sell_price,
                closed.duration,
                closed.bottom_price,
                closed.percentage_drop,
                closed.reference_change,
                closed.reference_change_30m,
                closed.closed_at,
            )
            position.status = PositionStatus.IDLE
            self.store.remove(symbol)

            log.info(
                "%s target %s reached at %s after %s (drop %.2f%%)",
                symbol,
                position.sell_target,
                price,
                closed.duration,
                closed.percentage_drop,
            )
            return SweepResult(symbol, "closed", price=price)

    def close_record(
        self, position: Position, snapshot: ReferenceSnapshot, now: datetime
    ) -> ClosedSignal:
        # drop is measured from the lowest accepted entry
        baseline = position.last_entry
        bottom = position.bottom_price
        percentage_drop = round((baseline - bottom) / baseline * 100, 2)

        reference_change = None
        if snapshot.price is not None and position.reference_price_at_open:
            reference_change = pct_change(snapshot.price, position.reference_price_at_open)

        return ClosedSignal(
            symbol=position.symbol,
            entry_prices=list(position.entry_prices),
            sell_price=position.sell_target,
            duration=fmt_duration(now - position.opened_at),
            bottom_price=bottom,
            percentage_drop=percentage_drop,
            reference_change=reference_change,
            reference_change_30m=snapshot.change_30m,
            closed_at=now,
        )

    def active_positions(self) -> List[Position]:
        return self.store.positions()
