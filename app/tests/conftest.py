from datetime import datetime, timedelta, timezone

import pytest

from app.market.snapshot import DataUnavailable
from app.signals.tracker import PositionTracker, TrackerConfig

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    """
    Ensure tests never talk to Telegram or write logs into the repo.
    """
    monkeypatch.setenv("TRACKED_SYMBOLS", "ETHUSDT,SOLUSDT")
    monkeypatch.setenv("EXCLUDED_SYMBOLS", "")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "")
    monkeypatch.setenv("TELEGRAM_WEBHOOK_SECRET", "")
    monkeypatch.setenv("AUTO_START", "false")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "20")


def rising(last: float, n: int = 15, step: float = 0.5) -> list:
    """Strictly increasing closes ending at ``last`` (RSI 100)."""
    return [last - (n - 1 - i) * step for i in range(n)]


def falling(last: float, n: int = 15, step: float = 0.5) -> list:
    """Strictly decreasing closes ending at ``last`` (RSI 0)."""
    return [last + (n - 1 - i) * step for i in range(n)]


class FakeNotifier:
    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.sent = []
        self.edits = []
        self._next_id = 1

    def announce(self, text):
        self.sent.append(text)
        if not self.deliver:
            return {}
        handle = {"100": self._next_id}
        self._next_id += 1
        return handle

    def revise(self, handle, text):
        self.edits.append((dict(handle), text))
        return len(handle)


class FakeSignalLog:
    def __init__(self):
        self.samples = []
        self.closed = []

    def append_sample(self, sample):
        self.samples.append(sample)
        return True

    def append_closed_signal(self, *args):
        self.closed.append(args)
        return True


class FakeProvider:
    """Closes keyed by (symbol, interval); values may be DataUnavailable or an exception."""

    def __init__(self, closes=None, reference_prices=None):
        self.closes = dict(closes or {})
        self.reference_prices = list(reference_prices or [])
        self.calls = []

    def get_closes(self, symbol, interval, count):
        self.calls.append((symbol, interval, count))
        value = self.closes.get((symbol, interval), DataUnavailable("missing"))
        if isinstance(value, Exception):
            raise value
        return value

    def get_reference_price(self):
        if not self.reference_prices:
            return DataUnavailable("no_reference")
        return self.reference_prices.pop(0)


@pytest.fixture
def make_tracker():
    def _make(deliver: bool = True, **overrides):
        cfg = dict(
            long_rsi_max=10.0,
            short_rsi_min=30.0,
            cooldown=timedelta(minutes=30),
        )
        cfg.update(overrides)
        notifier = FakeNotifier(deliver=deliver)
        signal_log = FakeSignalLog()
        tracker = PositionTracker(TrackerConfig(**cfg), notifier, signal_log)
        return tracker, notifier, signal_log

    return _make
