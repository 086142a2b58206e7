from __future__ import annotations

import random
import time

import requests


def kline_closes(klines: list) -> list[float]:
    """
    Binance kline format:
    [openTime, open, high, low, close, volume, closeTime, ...]
    """
    return [float(k[4]) for k in klines]


class BinanceSpotClient:
    """Public (unsigned) Binance spot market-data endpoints."""

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        timeout: float = 15.0,
        max_retries: int = 0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()

        self._exchange_info_cache: dict | None = None
        self._exchange_info_cache_ts: float = 0.0

    def _request(self, method: str, path: str, params=None):
        url = f"{self.base_url}{path}"
        params = dict(params or {})

        last_err = None
        for attempt in range(self.max_retries + 1):
            try:
                r = self.session.request(
                    method, url, params=params, timeout=self.timeout
                )

                # Rate limit / temp ban
                if r.status_code in (418, 429):
                    last_err = f"HTTP {r.status_code}"
                    if attempt < self.max_retries:
                        ra = r.headers.get("Retry-After")
                        sleep_s = float(ra) if ra else (0.4 * (2**attempt))
                        sleep_s += random.uniform(0, 0.2)
                        time.sleep(min(sleep_s, 10.0))
                    continue

                # Server errors
                if r.status_code >= 500:
                    last_err = f"HTTP {r.status_code}"
                    if attempt < self.max_retries:
                        time.sleep(min(0.4 * (2**attempt), 8.0))
                    continue

                if r.status_code >= 400:
                    raise RuntimeError(f"Binance HTTP {r.status_code}: {r.text}")
                return r.json() if r.content else None

            except (requests.Timeout, requests.ConnectionError) as e:
                last_err = e
                if attempt < self.max_retries:
                    time.sleep(min(0.4 * (2**attempt), 8.0))
                continue

        raise RuntimeError(
            f"Binance request failed after {self.max_retries + 1} attempt(s): "
            f"{method} {path} ({last_err})"
        )

    # ---------------- PUBLIC ----------------

    def ping(self) -> dict:
        r = self.session.get(f"{self.base_url}/api/v3/ping", timeout=self.timeout)
        return {"status_code": r.status_code}

    def exchange_info(self) -> dict:
        return self._request("GET", "/api/v3/exchangeInfo")

    def exchange_info_cached(self, ttl_seconds: int = 300) -> dict:
        now = time.time()
        if (
            self._exchange_info_cache
            and (now - self._exchange_info_cache_ts) < ttl_seconds
        ):
            return self._exchange_info_cache

        data = self.exchange_info()
        self._exchange_info_cache = data
        self._exchange_info_cache_ts = now
        return data

    def klines(self, symbol: str, interval: str = "1m", limit: int = 15) -> list:
        params = {"symbol": symbol.upper(), "interval": interval, "limit": limit}
        return self._request("GET", "/api/v3/klines", params=params)

    def last_price(self, symbol: str) -> float:
        data = self._request(
            "GET",
            "/api/v3/ticker/price",
            params={"symbol": symbol.upper()},
        )
        return float(data["price"])
