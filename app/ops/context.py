from __future__ import annotations
from contextvars import ContextVar
from typing import Optional

# Context-local (safe for async tasks spawned inside a cycle)
_current_cycle_id: ContextVar[Optional[str]] = ContextVar(
    "current_cycle_id", default=None
)
_current_cycle_kind: ContextVar[Optional[str]] = ContextVar(
    "current_cycle_kind", default=None
)


def set_cycle(cycle_id: str, kind: str) -> None:
    _current_cycle_id.set(cycle_id)
    _current_cycle_kind.set(kind)


def get_cycle_id() -> Optional[str]:
    return _current_cycle_id.get()


def get_cycle_kind() -> Optional[str]:
    return _current_cycle_kind.get()


def clear_cycle() -> None:
    _current_cycle_id.set(None)
    _current_cycle_kind.set(None)
