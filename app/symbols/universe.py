from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Set, Union


@dataclass(frozen=True)
class SymbolUniverse:
    requested: List[str]
    tracked: List[str]
    dropped: List[str]


def parse_symbols(raw: Union[str, List[str]], max_symbols: int = 200) -> List[str]:
    # Accept both CSV string and list[str]
    if isinstance(raw, list):
        symbols = [str(s).strip().upper() for s in raw if str(s).strip()]
    else:
        symbols = [s.strip().upper() for s in (raw or "").split(",") if s.strip()]

    # remove duplicates but keep order
    seen: Set[str] = set()
    unique = []
    for s in symbols:
        if s not in seen:
            seen.add(s)
            unique.append(s)

    return unique[:max_symbols]


def filter_tracked(
    requested: List[str], excluded: Iterable[str], quote_asset: str = "USDT"
) -> SymbolUniverse:
    """Drop excluded pairs and anything not quoted in ``quote_asset``."""
    skip = {s.upper() for s in excluded}
    quote = quote_asset.upper()

    tracked = [s for s in requested if s not in skip and s.endswith(quote)]
    dropped = [s for s in requested if s not in tracked]
    return SymbolUniverse(requested=requested, tracked=tracked, dropped=dropped)


def tradable_symbols(exchange_info: dict, quote_asset: str = "USDT") -> List[str]:
    # Binance exchangeInfo structure: {"symbols": [{"symbol": "...", "status":"TRADING", "quoteAsset": "USDT"}, ...]}
    quote = quote_asset.upper()
    return [
        s["symbol"]
        for s in exchange_info.get("symbols", [])
        if s.get("status") == "TRADING" and s.get("quoteAsset", "").upper() == quote
    ]
