from app.symbols.universe import filter_tracked, parse_symbols, tradable_symbols


def test_parse_symbols_dedups_and_caps():
    assert parse_symbols("eth usdt,ETHUSDT, solusdt,ethusdt") == [
        "ETH USDT",
        "ETHUSDT",
        "SOLUSDT",
    ]
    assert parse_symbols(["a", "b", "c"], max_symbols=2) == ["A", "B"]


def test_filter_tracked_drops_excluded_and_foreign_quotes():
    u = filter_tracked(["ETHUSDT", "ETHBTC", "USDCUSDT", "SOLUSDT"], ["USDCUSDT"], "USDT")
    assert u.tracked == ["ETHUSDT", "SOLUSDT"]
    assert u.dropped == ["ETHBTC", "USDCUSDT"]


def test_tradable_symbols_from_exchange_info():
    info = {
        "symbols": [
            {"symbol": "ETHUSDT", "status": "TRADING", "quoteAsset": "USDT"},
            {"symbol": "LUNAUSDT", "status": "BREAK", "quoteAsset": "USDT"},
            {"symbol": "ETHBTC", "status": "TRADING", "quoteAsset": "BTC"},
        ]
    }
    assert tradable_symbols(info, "usdt") == ["ETHUSDT"]
