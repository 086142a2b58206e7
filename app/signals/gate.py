from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional


class NotificationGate:
    """
    Cooldown policy for *new* signal notifications.

    - A symbol may raise a new signal only if nothing was announced for it
      within the cooldown window.
    - Edits to an already open signal never pass through this gate.
    - The caller records the announcement with ``record`` once it goes out.
    """

    def __init__(self, cooldown: timedelta):
        self.cooldown = cooldown
        self._last_notified_at: Dict[str, datetime] = {}

    def may_notify(self, symbol: str, now: datetime) -> bool:
        last = self._last_notified_at.get(symbol)
        if last is None:
            return True
        return now - last >= self.cooldown

    def record(self, symbol: str, now: datetime) -> None:
        self._last_notified_at[symbol] = now

    def last_notified_at(self, symbol: str) -> Optional[datetime]:
        return self._last_notified_at.get(symbol)
