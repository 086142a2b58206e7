from __future__ import annotations

import asyncio
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, Header, HTTPException

from app.core.config import Settings, settings
from app.core.logging_setup import configure_logging
from app.exchange.binance.client import BinanceSpotClient
from app.market.snapshot import MarketSnapshotProvider
from app.notify.telegram import SignalNotifier, SubscriberRegistry, TelegramClient
from app.persistence.signal_log import SignalLogger
from app.runner.scheduler import Scheduler
from app.signals.reference import ReferenceAssetTracker
from app.signals.tracker import PositionTracker, TrackerConfig
from app.symbols.universe import filter_tracked, parse_symbols, tradable_symbols

log = logging.getLogger("rsiwatch.main")

app = FastAPI(title="RSI Signal Watcher")

SENSITIVE_KEYS = {"TELEGRAM_BOT_TOKEN", "TELEGRAM_WEBHOOK_SECRET"}


@dataclass
class WatcherService:
    scheduler: Scheduler
    tracker: PositionTracker
    notifier: SignalNotifier
    client: BinanceSpotClient


_service: Optional[WatcherService] = None


def resolve_symbols(cfg: Settings, client: BinanceSpotClient) -> List[str]:
    requested = parse_symbols(cfg.TRACKED_SYMBOLS, cfg.MAX_SYMBOLS)
    if not requested and cfg.DISCOVER_SYMBOLS:
        try:
            info = client.exchange_info_cached()
            requested = tradable_symbols(info, cfg.QUOTE_ASSET)[: cfg.MAX_SYMBOLS]
        except Exception as e:
            log.error("symbol discovery failed: %s", e)

    universe = filter_tracked(requested, cfg.EXCLUDED_SYMBOLS, cfg.QUOTE_ASSET)
    if universe.dropped:
        log.info("not watching %s", ", ".join(universe.dropped))
    return universe.tracked


def build_service(cfg: Settings) -> WatcherService:
    client = BinanceSpotClient(
        base_url=cfg.BINANCE_API_BASE_URL,
        timeout=cfg.HTTP_TIMEOUT_SECONDS,
        max_retries=cfg.BINANCE_MAX_RETRIES,
    )
    provider = MarketSnapshotProvider(client, reference_symbol=cfg.REFERENCE_SYMBOL)
    notifier = SignalNotifier(
        TelegramClient(
            cfg.TELEGRAM_BOT_TOKEN,
            base_url=cfg.TELEGRAM_API_BASE_URL,
            timeout=cfg.HTTP_TIMEOUT_SECONDS,
        ),
        SubscriberRegistry(cfg.TELEGRAM_CHAT_ID),
    )
    tracker = PositionTracker(
        TrackerConfig.from_settings(cfg),
        notifier,
        SignalLogger(cfg.RSI_LOG_FILE, cfg.SIGNAL_LOG_FILE),
    )
    scheduler = Scheduler(
        tracker,
        provider,
        ReferenceAssetTracker(provider),
        resolve_symbols(cfg, client),
        interval_seconds=cfg.POLL_INTERVAL_SECONDS,
    )
    return WatcherService(
        scheduler=scheduler, tracker=tracker, notifier=notifier, client=client
    )


def get_service() -> WatcherService:
    global _service
    if _service is None:
        _service = build_service(settings)
    return _service


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.on_event("startup")
async def _startup():
    """Fail-fast config validation, then optional auto start."""
    configure_logging(settings.LOG_LEVEL)
    try:
        warnings = settings.validate_runtime()
    except ValueError as e:
        log.critical(str(e))
        raise
    for w in warnings:
        log.warning("[CONFIG WARNING] %s", w)

    # symbol discovery may hit Binance; keep it off the event loop
    service = await asyncio.to_thread(get_service)
    if settings.AUTO_START:
        service.scheduler.start()


@app.on_event("shutdown")
async def _shutdown():
    if _service is not None:
        await _service.scheduler.stop()


@app.get("/")
def root():
    return {"ok": True, "service": "rsi-signal-watcher", "time_utc": _utc_now_iso()}


@app.get("/binance/ping")
def binance_ping():
    try:
        return get_service().client.ping()
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/config/symbols")
def config_symbols():
    return {"symbols": get_service().scheduler.symbols}


@app.get("/debug/settings")
def debug_settings():
    snap = settings.model_dump()
    for k in SENSITIVE_KEYS:
        if snap.get(k):
            snap[k] = "***"
    return snap


@app.get("/runner/status")
def runner_status() -> Dict[str, Any]:
    return get_service().scheduler.status()


@app.post("/runner/start")
async def runner_start():
    started = get_service().scheduler.start()
    return {"started": started, "status": get_service().scheduler.status()}


@app.post("/runner/stop")
async def runner_stop():
    stopped = await get_service().scheduler.stop()
    return {"stopped": stopped, "status": get_service().scheduler.status()}


@app.post("/runner/once")
async def runner_once():
    scheduler = get_service().scheduler
    detection = await scheduler.run_detection_cycle()
    target = await scheduler.run_target_cycle()
    return {"detection": detection, "target": target}


@app.get("/signals/active")
def signals_active():
    positions = get_service().tracker.active_positions()
    return {"count": len(positions), "signals": [p.to_dict() for p in positions]}


@app.post("/telegram/webhook")
def telegram_webhook(
    update: dict = Body(...),
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
):
    secret = settings.TELEGRAM_WEBHOOK_SECRET
    if secret and not hmac.compare_digest(
        (x_telegram_bot_api_secret_token or "").encode(), secret.encode()
    ):
        raise HTTPException(status_code=403, detail="bad webhook secret")

    message = update.get("message") or update.get("edited_message") or {}
    chat_id = (message.get("chat") or {}).get("id")
    text = message.get("text") or ""
    if chat_id is None:
        return {"ok": True, "handled": False}

    reply = get_service().notifier.handle_command(str(chat_id), text)
    return {"ok": True, "handled": reply is not None, "reply": reply}
