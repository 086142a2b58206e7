"""
logging_setup.py – stdout logger shared by every component.

Records carry the id and kind of the cycle they were emitted from, so the
interleaved output of concurrent per-symbol tasks can be told apart.
"""

from __future__ import annotations

import logging
import sys

from app.ops.context import get_cycle_id, get_cycle_kind

_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(cycle)s] %(message)s"


class CycleContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        cycle_id = get_cycle_id()
        kind = get_cycle_kind()
        if cycle_id:
            record.cycle = f"{kind or 'cycle'}:{cycle_id[:8]}"
        else:
            record.cycle = "-"
        return True


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Install one stdout handler on the ``rsiwatch`` logger (idempotent)."""
    logger = logging.getLogger("rsiwatch")
    logger.setLevel(level.upper())
    if not logger.handlers:  # only add once
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(_FORMAT))
        h.addFilter(CycleContextFilter())
        logger.addHandler(h)
        logger.propagate = False
    return logger
