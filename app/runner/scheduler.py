from __future__ import annotations

import asyncio
import logging
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from app.market.snapshot import MarketSnapshotProvider
from app.ops.context import clear_cycle, set_cycle
from app.signals.models import SweepResult
from app.signals.reference import ReferenceAssetTracker
from app.signals.tracker import PositionTracker

log = logging.getLogger("rsiwatch.scheduler")

DETECTION = "detect"
TARGET = "target"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LoopState:
    cycle_count: int = 0
    last_cycle_at: Optional[str] = None
    last_error: Optional[str] = None
    last_actions: Dict[str, int] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None


class Scheduler:
    """
    Drives the two periodic sweeps:
    - detection: indicators for every tracked symbol, may open/average signals
    - target: checks every open signal against its sell target

    Each loop starts a new cycle every ``interval_seconds`` without waiting
    for the previous one, so slow cycles may overlap. Symbols within a cycle
    run concurrently; per-symbol state is serialized by the tracker.
    """

    def __init__(
        self,
        tracker: PositionTracker,
        provider: MarketSnapshotProvider,
        reference: ReferenceAssetTracker,
        symbols: List[str],
        interval_seconds: float = 20.0,
    ):
        self.tracker = tracker
        self.provider = provider
        self.reference = reference
        self.symbols = list(symbols)
        self.interval_seconds = interval_seconds

        self.running = False
        self.started_at: Optional[str] = None
        self.loops: Dict[str, LoopState] = {DETECTION: LoopState(), TARGET: LoopState()}
        self._inflight: Set[asyncio.Task] = set()

    @property
    def candle_count(self) -> int:
        return self.tracker.config.rsi_period + 1

    # ---------------- PER SYMBOL ----------------

    async def _closes(self, symbol: str, interval: str):
        return await asyncio.to_thread(
            self.provider.get_closes, symbol, interval, self.candle_count
        )

    async def detect_symbol(self, symbol: str, snapshot) -> SweepResult:
        cfg = self.tracker.config
        short_closes, long_closes = await asyncio.gather(
            self._closes(symbol, cfg.short_interval),
            self._closes(symbol, cfg.long_interval),
        )
        return await self.tracker.detect(symbol, short_closes, long_closes, snapshot)

    async def check_symbol(self, symbol: str, snapshot) -> SweepResult:
        short_closes = await self._closes(symbol, self.tracker.config.short_interval)
        return await self.tracker.check_target(symbol, short_closes, snapshot)

    # ---------------- CYCLES ----------------

    async def _run_cycle(
        self,
        kind: str,
        symbols: List[str],
        step: Callable[[str, Any], Awaitable[SweepResult]],
        refresh_reference: bool = False,
    ) -> Dict[str, Any]:
        state = self.loops[kind]
        cycle_id = str(uuid.uuid4())
        set_cycle(cycle_id, kind)
        try:
            state.last_cycle_at = _utc_now_iso()
            # only detection moves the reference buffer forward
            if refresh_reference:
                snapshot = await self.reference.fetch()
            else:
                snapshot = self.reference.latest

            async def guarded(symbol: str) -> SweepResult:
                # never kill whole cycle for one symbol
                try:
                    return await step(symbol, snapshot)
                except Exception as e:
                    log.exception("%s %s failed", kind, symbol)
                    state.last_error = f"{symbol}: {type(e).__name__}: {e}"
                    return SweepResult(symbol, "error", reason=repr(e))

            results = await asyncio.gather(*(guarded(s) for s in symbols))

            actions: Dict[str, int] = {}
            for r in results:
                actions[r.action] = actions.get(r.action, 0) + 1
            state.cycle_count += 1
            state.last_actions = actions
            log.debug("%s cycle done: %s", kind, actions)

            return {
                "cycle_id": cycle_id,
                "kind": kind,
                "ran": len(results),
                "actions": actions,
                "reference": {
                    "price": snapshot.price,
                    "change": snapshot.change,
                    "change_30m": snapshot.change_30m,
                },
                "results": [asdict(r) for r in results],
            }
        finally:
            clear_cycle()

    async def run_detection_cycle(self) -> Dict[str, Any]:
        return await self._run_cycle(
            DETECTION, self.symbols, self.detect_symbol, refresh_reference=True
        )

    async def run_target_cycle(self) -> Dict[str, Any]:
        return await self._run_cycle(
            TARGET, self.tracker.store.active_symbols(), self.check_symbol
        )

    # ---------------- LOOPS ----------------

    async def _loop(self, kind: str, cycle: Callable[[], Awaitable[Dict[str, Any]]]):
        while self.running:
            task = asyncio.create_task(cycle())
            self._inflight.add(task)
            task.add_done_callback(lambda t, k=kind: self._cycle_done(k, t))
            await asyncio.sleep(self.interval_seconds)

    def _cycle_done(self, kind: str, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.loops[kind].last_error = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
            log.error("%s cycle crashed: %r", kind, exc)

    def start(self) -> bool:
        if self.running:
            return False
        self.running = True
        self.started_at = _utc_now_iso()
        self.loops[DETECTION].task = asyncio.create_task(
            self._loop(DETECTION, self.run_detection_cycle)
        )
        self.loops[TARGET].task = asyncio.create_task(
            self._loop(TARGET, self.run_target_cycle)
        )
        log.info(
            "watching %d symbols every %ss", len(self.symbols), self.interval_seconds
        )
        return True

    async def stop(self) -> bool:
        if not self.running:
            return False
        self.running = False
        loop_tasks = [s.task for s in self.loops.values() if s.task is not None]
        for t in loop_tasks:
            t.cancel()
        # in-flight cycles are allowed to finish
        await asyncio.gather(*loop_tasks, *list(self._inflight), return_exceptions=True)
        for s in self.loops.values():
            s.task = None
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "started_at": self.started_at,
            "interval_seconds": self.interval_seconds,
            "symbols": len(self.symbols),
            "active_signals": len(self.tracker.store.active_symbols()),
            "inflight_cycles": len(self._inflight),
            "loops": {
                kind: {
                    "cycle_count": s.cycle_count,
                    "last_cycle_at": s.last_cycle_at,
                    "last_error": s.last_error,
                    "last_actions": s.last_actions,
                }
                for kind, s in self.loops.items()
            },
        }
