import pytest

from app.core.config import Settings, interval_seconds


def test_symbol_lists_accept_csv_and_json():
    s = Settings(TRACKED_SYMBOLS=" ethusdt, SOLUSDT ,", EXCLUDED_SYMBOLS='["dogeusdt"]')
    assert s.TRACKED_SYMBOLS == ["ETHUSDT", "SOLUSDT"]
    assert s.EXCLUDED_SYMBOLS == ["DOGEUSDT"]


def test_env_symbols_are_parsed():
    assert Settings().TRACKED_SYMBOLS == ["ETHUSDT", "SOLUSDT"]


def test_defaults_are_the_averaging_down_profile():
    s = Settings()
    assert s.LONG_RSI_MAX == 10.0
    assert s.SHORT_RSI_MIN == 30.0
    assert s.COOLDOWN_MINUTES == 30.0
    assert s.AVERAGING_DOWN_ENABLED is True
    assert s.sell_target_multiplier == pytest.approx(1.011)


def test_thresholds_outside_range_fail():
    s = Settings(LONG_RSI_MAX=120, SHORT_RSI_MIN=-1)
    with pytest.raises(ValueError) as exc:
        s.validate_runtime()
    assert "LONG_RSI_MAX" in str(exc.value)
    assert "SHORT_RSI_MIN" in str(exc.value)


def test_bad_intervals_fail():
    with pytest.raises(ValueError):
        Settings(SHORT_INTERVAL="banana").validate_runtime()
    with pytest.raises(ValueError):
        Settings(SHORT_INTERVAL="15m", LONG_INTERVAL="15m").validate_runtime()


def test_non_positive_cooldown_fails():
    for value in (0, -5):
        with pytest.raises(ValueError) as exc:
            Settings(COOLDOWN_MINUTES=value).validate_runtime()
        assert "COOLDOWN_MINUTES" in str(exc.value)


def test_non_positive_margin_fails():
    with pytest.raises(ValueError):
        Settings(SELL_TARGET_MARGIN_PCT=0).validate_runtime()


def test_missing_telegram_is_warning_not_error():
    warnings = Settings().validate_runtime()
    assert any("TELEGRAM" in w for w in warnings)


def test_empty_universe_warns():
    warnings = Settings(TRACKED_SYMBOLS="").validate_runtime()
    assert any("Nothing will be watched" in w for w in warnings)


def test_interval_seconds():
    assert interval_seconds("1m") == 60
    assert interval_seconds("15m") == 900
    assert interval_seconds("4h") == 14400
    assert interval_seconds("1d") == 86400
    assert interval_seconds("x") == 0
    assert interval_seconds("am") == 0
