from datetime import timedelta

from app.signals.gate import NotificationGate

from conftest import T0


def test_first_notification_allowed():
    gate = NotificationGate(timedelta(minutes=30))
    assert gate.may_notify("ETHUSDT", T0)
    assert gate.last_notified_at("ETHUSDT") is None


def test_blocks_within_cooldown_then_allows():
    gate = NotificationGate(timedelta(minutes=30))
    gate.record("ETHUSDT", T0)

    assert not gate.may_notify("ETHUSDT", T0 + timedelta(minutes=29, seconds=59))
    assert gate.may_notify("ETHUSDT", T0 + timedelta(minutes=30))


def test_cooldown_is_per_symbol():
    gate = NotificationGate(timedelta(minutes=5))
    gate.record("ETHUSDT", T0)
    assert gate.may_notify("SOLUSDT", T0 + timedelta(seconds=1))
