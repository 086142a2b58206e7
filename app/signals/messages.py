from __future__ import annotations

from datetime import timedelta
from typing import Optional

from app.signals.models import Position, ReferenceSnapshot

TRADE_URL = "https://www.binance.com/en/trade/{symbol}"


def fmt_price(price: Optional[float]) -> str:
    if price is None:
        return "-"
    return f"{price:.8f}".rstrip("0").rstrip(".")


def fmt_pct(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:+.2f}%"


def fmt_duration(elapsed: timedelta) -> str:
    total = max(int(elapsed.total_seconds()), 0)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h {minutes}m {seconds}s"


def _entries(position: Position) -> str:
    return "-".join(fmt_price(p) for p in position.entry_prices)


def _reference_line(name: str, snapshot: Optional[ReferenceSnapshot]) -> str:
    if snapshot is None or not snapshot.available:
        return ""
    return (
        f"🟠 {name}: {fmt_price(snapshot.price)} "
        f"({fmt_pct(snapshot.change)}, 30m {fmt_pct(snapshot.change_30m)})\n"
    )


def render_open(
    position: Position,
    timeframe: str,
    reference_name: str = "BTC",
    snapshot: Optional[ReferenceSnapshot] = None,
) -> str:
    """New signal and averaging-down updates share this layout."""
    return (
        "📢 *Buy Signal*\n"
        f"💎 Token: #{position.symbol}\n"
        f"💰 Entry Prices: {_entries(position)}\n"
        f"💰 Sell Price: {fmt_price(position.sell_target)}\n"
        f"🕒 Timeframe: {timeframe}\n"
        f"{_reference_line(reference_name, snapshot)}"
        f"💹 Trade Now on: [Binance]({TRADE_URL.format(symbol=position.symbol)})\n"
    )


def render_target_achieved(
    position: Position,
    duration: str,
    percentage_drop: float,
    reference_name: str = "BTC",
    reference_change: Optional[float] = None,
    reference_change_30m: Optional[float] = None,
) -> str:
    reference = ""
    if reference_change is not None or reference_change_30m is not None:
        reference = (
            f"🟠 {reference_name}: {fmt_pct(reference_change)} since entry, "
            f"30m {fmt_pct(reference_change_30m)}\n"
        )
    return (
        "📢 *Buy Signal*\n"
        f"💎 Token: #{position.symbol}\n"
        f"💰 Entry Prices: {_entries(position)}\n"
        f"💰 Sell Price: {fmt_price(position.sell_target)}\n"
        f"📉 Bottom Price: {fmt_price(position.bottom_price)}\n"
        f"📉 Percentage Drop: {percentage_drop:.2f}%\n"
        f"{reference}"
        "✅ Target Achieved\n"
        f"⏱️ Duration: {duration}\n"
        f"💹 Traded on: [Binance]({TRADE_URL.format(symbol=position.symbol)})\n"
    )
