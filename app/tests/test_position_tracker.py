import asyncio
from datetime import timedelta

from app.market.snapshot import DataUnavailable
from app.signals.models import IndicatorSample, PositionStatus, ReferenceSnapshot

from conftest import T0, falling, rising

SYM = "ETHUSDT"


def _open(tracker, price=100.0, now=T0, snapshot=None):
    # long interval oversold (RSI 0), short interval bouncing (RSI 100)
    return tracker.detect(SYM, rising(price), falling(50.0), snapshot, now=now)


def _state(position):
    return (
        list(position.entry_prices),
        position.sell_target,
        position.bottom_price,
        position.opened_at,
        dict(position.notification_handle),
    )


def test_open_sets_position_and_notifies(make_tracker):
    tracker, notifier, signal_log = make_tracker()

    res = asyncio.run(_open(tracker, snapshot=ReferenceSnapshot(price=60000.0)))

    assert res.action == "opened"
    p = tracker.store.get(SYM)
    assert p.status == PositionStatus.ACTIVE
    assert p.entry_prices == [100.0]
    assert p.sell_target == 101.1
    assert p.bottom_price == 100.0
    assert p.opened_at == T0
    assert p.reference_price_at_open == 60000.0
    assert p.notification_handle == {"100": 1}
    assert len(notifier.sent) == 1
    assert "#ETHUSDT" in notifier.sent[0]
    assert "101.1" in notifier.sent[0]
    assert tracker.gate.last_notified_at(SYM) == T0
    assert len(signal_log.samples) == 1


def test_sample_logged_even_without_signal(make_tracker):
    tracker, notifier, signal_log = make_tracker()

    res = asyncio.run(tracker.detect(SYM, falling(100.0), falling(50.0), now=T0))

    assert res.action == "sampled"
    assert tracker.store.get(SYM) is None
    assert notifier.sent == []
    assert signal_log.samples == [res.sample]
    assert res.sample == IndicatorSample(
        symbol=SYM, short_score=0.0, long_score=0.0, price=100.0, observed_at=T0
    )


def test_unavailable_data_skips_without_logging(make_tracker):
    tracker, notifier, signal_log = make_tracker()

    res = asyncio.run(
        tracker.detect(SYM, DataUnavailable("down"), falling(50.0), now=T0)
    )
    assert res.action == "skipped"

    res = asyncio.run(tracker.detect(SYM, rising(100.0)[:10], falling(50.0), now=T0))
    assert res.action == "skipped"

    assert signal_log.samples == []
    assert tracker.store.get(SYM) is None


def test_threshold_direction_strict_uptrend_does_not_open(make_tracker):
    tracker, notifier, _ = make_tracker(long_rsi_max=60.0, short_rsi_min=10.0)
    long_closes = [100.0 + i for i in range(15)]  # RSI 100, not below 60

    res = asyncio.run(tracker.detect(SYM, rising(100.0), long_closes, now=T0))

    assert res.action == "sampled"
    assert tracker.store.get(SYM) is None
    assert notifier.sent == []


def test_averaging_down_prepends_and_keeps_target(make_tracker):
    tracker, notifier, _ = make_tracker()

    async def scenario():
        await _open(tracker)
        # scores are irrelevant once a position is open
        res = await tracker.detect(SYM, falling(99.0), rising(50.0), now=T0)
        return res

    res = asyncio.run(scenario())

    assert res.action == "averaged"
    p = tracker.store.get(SYM)
    assert p.entry_prices == [99.0, 100.0]
    assert p.sell_target == 101.1
    assert p.bottom_price == 99.0
    assert len(notifier.sent) == 1
    handle, text = notifier.edits[0]
    assert handle == {"100": 1}
    assert "99-100" in text


def test_replaying_non_lower_price_is_idempotent(make_tracker):
    tracker, notifier, _ = make_tracker()

    async def scenario():
        await _open(tracker)
        await tracker.detect(SYM, falling(99.0), rising(50.0), now=T0)
        before = _state(tracker.store.get(SYM))
        for _ in range(3):
            res = await tracker.detect(SYM, falling(99.5), rising(50.0), now=T0)
            assert res.action == "held"
        return before, _state(tracker.store.get(SYM))

    before, after = asyncio.run(scenario())
    assert before == after
    assert len(notifier.edits) == 1


def test_price_above_target_does_not_add_entry(make_tracker):
    tracker, _, _ = make_tracker()

    async def scenario():
        await _open(tracker)
        return await tracker.detect(SYM, rising(102.0), falling(50.0), now=T0)

    res = asyncio.run(scenario())
    assert res.action == "held"
    assert tracker.store.get(SYM).entry_prices == [100.0]


def test_averaging_down_can_be_disabled(make_tracker):
    tracker, notifier, _ = make_tracker(averaging_down=False)

    async def scenario():
        await _open(tracker)
        return await tracker.detect(SYM, falling(90.0), rising(50.0), now=T0)

    res = asyncio.run(scenario())
    assert res.action == "held"
    assert tracker.store.get(SYM).entry_prices == [100.0]
    assert notifier.edits == []


def test_target_check_tracks_bottom_and_holds(make_tracker):
    tracker, notifier, signal_log = make_tracker()

    async def scenario():
        await _open(tracker)
        r1 = await tracker.check_target(SYM, [98.0], now=T0 + timedelta(minutes=1))
        r2 = await tracker.check_target(SYM, [99.5], now=T0 + timedelta(minutes=2))
        return r1, r2

    r1, r2 = asyncio.run(scenario())
    assert r1.action == r2.action == "held"
    p = tracker.store.get(SYM)
    assert p.bottom_price == 98.0
    assert p.entry_prices == [100.0]
    assert signal_log.closed == []


def test_target_reached_closes_and_logs(make_tracker):
    tracker, notifier, signal_log = make_tracker()
    opened_ref = ReferenceSnapshot(price=60000.0)
    closing_ref = ReferenceSnapshot(price=60600.0, change=0.1, change_30m=-0.5)

    async def scenario():
        await _open(tracker, snapshot=opened_ref)
        position = tracker.store.get(SYM)
        res = await tracker.check_target(
            SYM, [101.2], closing_ref, now=T0 + timedelta(hours=1, minutes=2, seconds=3)
        )
        return res, position

    res, position = asyncio.run(scenario())

    assert res.action == "closed"
    assert position.status == PositionStatus.IDLE
    assert tracker.store.get(SYM) is None
    (
        symbol,
        entries,
        sell_price,
        duration,
        bottom,
        drop,
        ref_change,
        ref_change_30m,
        closed_at,
    ) = signal_log.closed[0]
    assert symbol == SYM
    assert entries == [100.0]
    assert sell_price == 101.1
    assert duration == "1h 2m 3s"
    assert bottom <= 100.0
    assert drop == 0.0
    assert ref_change == 1.0
    assert ref_change_30m == -0.5
    assert closed_at == T0 + timedelta(hours=1, minutes=2, seconds=3)

    handle, text = notifier.edits[-1]
    assert handle == {"100": 1}
    assert "Target Achieved" in text
    assert "1h 2m 3s" in text


def test_percentage_drop_uses_lowest_entry(make_tracker):
    tracker, _, signal_log = make_tracker()

    async def scenario():
        await _open(tracker)
        await tracker.detect(SYM, falling(99.0), rising(50.0), now=T0)
        await tracker.check_target(SYM, [98.0], now=T0)
        await tracker.check_target(SYM, [101.1], now=T0 + timedelta(minutes=5))

    asyncio.run(scenario())
    closed = signal_log.closed[0]
    assert closed[1] == [99.0, 100.0]
    assert closed[4] == 98.0
    assert closed[5] == round((99.0 - 98.0) / 99.0 * 100, 2)


def test_invariants_hold_through_a_lifecycle(make_tracker):
    tracker, _, _ = make_tracker()
    moves = [99.0, 99.5, 97.0, 97.2, 96.0, 100.5, 95.5, 101.0]

    async def scenario():
        await _open(tracker)
        target = tracker.store.get(SYM).sell_target
        for i, price in enumerate(moves):
            if i % 2 == 0:
                await tracker.detect(SYM, falling(price), rising(50.0), now=T0)
            else:
                await tracker.check_target(SYM, [price], now=T0)
            p = tracker.store.get(SYM)
            assert p.sell_target == target
            assert p.bottom_price <= min(p.entry_prices)
            assert p.entry_prices == sorted(p.entry_prices)

    asyncio.run(scenario())


def test_cooldown_blocks_reopen_until_expired(make_tracker):
    tracker, notifier, _ = make_tracker(cooldown=timedelta(minutes=30))

    async def scenario():
        await _open(tracker, now=T0)
        await tracker.check_target(SYM, [102.0], now=T0 + timedelta(minutes=1))
        r1 = await _open(tracker, now=T0 + timedelta(minutes=10))
        r2 = await _open(tracker, now=T0 + timedelta(minutes=31))
        return r1, r2

    r1, r2 = asyncio.run(scenario())
    assert r1.action == "cooldown"
    assert r2.action == "opened"
    assert len(notifier.sent) == 2


def test_failed_notification_still_opens_and_closes(make_tracker):
    tracker, notifier, signal_log = make_tracker(deliver=False)

    async def scenario():
        await _open(tracker)
        assert tracker.store.get(SYM).notification_handle == {}
        await tracker.detect(SYM, falling(99.0), rising(50.0), now=T0)
        return await tracker.check_target(SYM, [101.5], now=T0)

    res = asyncio.run(scenario())
    assert res.action == "closed"
    assert notifier.edits == []
    assert len(signal_log.closed) == 1


def test_check_target_without_position_or_data(make_tracker):
    tracker, _, _ = make_tracker()

    async def scenario():
        r1 = await tracker.check_target(SYM, [100.0], now=T0)
        await _open(tracker)
        r2 = await tracker.check_target(SYM, DataUnavailable("down"), now=T0)
        return r1, r2

    r1, r2 = asyncio.run(scenario())
    assert r1.reason == "no_position"
    assert r2.action == "skipped"
    assert tracker.store.get(SYM).bottom_price == 100.0


def test_symbol_guard_serializes_target_check(make_tracker):
    tracker, _, _ = make_tracker()

    async def scenario():
        await _open(tracker)
        async with tracker.store.guard(SYM):
            task = asyncio.create_task(tracker.check_target(SYM, [102.0], now=T0))
            await asyncio.sleep(0.01)
            assert not task.done()
            assert tracker.store.get(SYM) is not None
        return await task

    res = asyncio.run(scenario())
    assert res.action == "closed"
    assert tracker.store.get(SYM) is None
