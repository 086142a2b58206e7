from __future__ import annotations

from typing import List, Optional


def rsi(closes: List[float], period: int = 14) -> Optional[float]:
    """
    Simplified RSI over a fixed window.

    Gains and losses are summed over the first ``period`` deltas of ``closes``
    and averaged by ``period``. There is no Wilder smoothing, so values differ
    from charting platforms. Returns None when fewer than ``period + 1``
    closes are supplied.
    """
    if period <= 0 or len(closes) < period + 1:
        return None
    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        diff = closes[i] - closes[i - 1]
        if diff > 0:
            gains += diff
        else:
            losses -= diff
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))
