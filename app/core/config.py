# app/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("rsiwatch.config")

_INTERVAL_UNITS = {"m": 60, "h": 3600, "d": 86400, "w": 604800}


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["BTCUSDT","ETHUSDT"]
      - csv:  "BTCUSDT,ETHUSDT"
      - json: '["BTCUSDT","ETHUSDT"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, list):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except ValueError:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


def interval_seconds(interval: str) -> int:
    """
    Convert a Binance kline interval like '1m', '15m', '1h' to seconds.
    Returns 0 for anything unparseable.
    """
    s = (interval or "").strip()
    if len(s) < 2 or s[-1] not in _INTERVAL_UNITS:
        return 0
    try:
        return int(s[:-1]) * _INTERVAL_UNITS[s[-1]]
    except ValueError:
        return 0


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False keeps pydantic-settings from json-decoding list fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Market data ---
    BINANCE_API_BASE_URL: str = "https://api.binance.com"
    BINANCE_MAX_RETRIES: int = 0
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # --- Symbols / universe ---
    TRACKED_SYMBOLS: List[str] = Field(default_factory=list)
    EXCLUDED_SYMBOLS: List[str] = Field(default_factory=list)
    QUOTE_ASSET: str = "USDT"
    DISCOVER_SYMBOLS: bool = False
    MAX_SYMBOLS: int = 200
    REFERENCE_SYMBOL: str = "BTCUSDT"

    # --- Indicator ---
    SHORT_INTERVAL: str = "1m"
    LONG_INTERVAL: str = "15m"
    RSI_PERIOD: int = 14
    LONG_RSI_MAX: float = 10.0
    SHORT_RSI_MIN: float = 30.0

    # --- Signal lifecycle ---
    COOLDOWN_MINUTES: float = 30.0
    SELL_TARGET_MARGIN_PCT: float = 1.1
    AVERAGING_DOWN_ENABLED: bool = True

    # --- Scheduler ---
    POLL_INTERVAL_SECONDS: float = 20.0
    AUTO_START: bool = False

    # --- Telegram ---
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    TELEGRAM_API_BASE_URL: str = "https://api.telegram.org"
    # checked against X-Telegram-Bot-Api-Secret-Token when set
    TELEGRAM_WEBHOOK_SECRET: str = ""

    # --- Logs ---
    RSI_LOG_FILE: str = "data/rsi_data.csv"
    SIGNAL_LOG_FILE: str = "data/buy_signals.csv"
    LOG_LEVEL: str = "INFO"

    @field_validator("TRACKED_SYMBOLS", mode="before")
    @classmethod
    def parse_tracked_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    @field_validator("EXCLUDED_SYMBOLS", mode="before")
    @classmethod
    def parse_excluded_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    def model_post_init(self, __context: Any) -> None:
        self.QUOTE_ASSET = (self.QUOTE_ASSET or "USDT").strip().upper()
        self.REFERENCE_SYMBOL = (self.REFERENCE_SYMBOL or "BTCUSDT").strip().upper()
        self.SHORT_INTERVAL = (self.SHORT_INTERVAL or "1m").strip()
        self.LONG_INTERVAL = (self.LONG_INTERVAL or "15m").strip()
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").strip().upper()
        self.TELEGRAM_CHAT_ID = (self.TELEGRAM_CHAT_ID or "").strip()

    @property
    def sell_target_multiplier(self) -> float:
        return 1.0 + float(self.SELL_TARGET_MARGIN_PCT) / 100.0

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.RSI_PERIOD < 2:
            errors.append("RSI_PERIOD must be >= 2.")

        for name in ("SHORT_INTERVAL", "LONG_INTERVAL"):
            if interval_seconds(getattr(self, name)) <= 0:
                errors.append(f"{name} must look like '1m', '15m', '1h' or '1d'.")

        if self.SHORT_INTERVAL == self.LONG_INTERVAL:
            errors.append("SHORT_INTERVAL and LONG_INTERVAL must differ.")

        for name in ("LONG_RSI_MAX", "SHORT_RSI_MIN"):
            value = float(getattr(self, name))
            if not 0.0 <= value <= 100.0:
                errors.append(f"{name} must be within [0, 100].")

        if self.COOLDOWN_MINUTES <= 0:
            errors.append("COOLDOWN_MINUTES must be > 0.")

        if self.SELL_TARGET_MARGIN_PCT <= 0:
            errors.append("SELL_TARGET_MARGIN_PCT must be > 0.")

        if self.POLL_INTERVAL_SECONDS <= 0:
            errors.append("POLL_INTERVAL_SECONDS must be > 0.")

        if self.MAX_SYMBOLS <= 0:
            errors.append("MAX_SYMBOLS must be > 0.")

        if self.BINANCE_MAX_RETRIES < 0:
            errors.append("BINANCE_MAX_RETRIES must be >= 0.")

        # Symbols sanity
        if not self.TRACKED_SYMBOLS and not self.DISCOVER_SYMBOLS:
            warnings.append(
                "TRACKED_SYMBOLS is empty and DISCOVER_SYMBOLS is off. Nothing will be watched."
            )

        overlap = set(self.TRACKED_SYMBOLS) & set(self.EXCLUDED_SYMBOLS)
        if overlap:
            warnings.append(
                f"Symbols both tracked and excluded (excluded wins): {sorted(overlap)}"
            )

        if not self.TELEGRAM_BOT_TOKEN or not self.TELEGRAM_CHAT_ID:
            warnings.append(
                "TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID missing. Signals will only be logged."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
