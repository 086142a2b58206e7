from __future__ import annotations

import logging
import threading
from typing import List, Optional

import requests

from app.signals.models import NotificationHandle

log = logging.getLogger("rsiwatch.telegram")

WELCOME = "🎉 You've successfully subscribed to receive signals!"
ALREADY_SUBSCRIBED = "✅ You're already subscribed to receive signals."
UNSUBSCRIBED = "⛔ You've unsubscribed from receiving signals."
NOT_SUBSCRIBED = "❌ You're not subscribed to any signals."


class TelegramClient:
    """Bot API calls used by the watcher. Failures are logged, never raised."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.telegram.org",
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def _post(self, method: str, payload: dict) -> dict:
        url = f"{self.base_url}/bot{self.token}/{method}"
        r = self.session.post(url, json=payload, timeout=self.timeout)
        if r.status_code >= 400:
            raise RuntimeError(f"Telegram HTTP {r.status_code}: {r.text}")
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram {method} rejected: {data.get('description')}")
        return data

    def send_message(self, chat_id: str, text: str) -> Optional[int]:
        if not self.enabled:
            log.info("telegram disabled, message for %s:\n%s", chat_id, text)
            return None
        try:
            data = self._post(
                "sendMessage",
                {"chat_id": chat_id, "text": text, "parse_mode": "Markdown"},
            )
            message_id = int(data["result"]["message_id"])
        except Exception as e:
            log.error("send to %s failed: %s", chat_id, e)
            return None
        log.info("message %s sent to %s", message_id, chat_id)
        return message_id

    def edit_message(self, chat_id: str, message_id: int, text: str) -> bool:
        if not self.enabled:
            log.info("telegram disabled, edit %s for %s:\n%s", message_id, chat_id, text)
            return False
        try:
            self._post(
                "editMessageText",
                {
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "text": text,
                    "parse_mode": "Markdown",
                },
            )
        except Exception as e:
            log.error("edit %s for %s failed: %s", message_id, chat_id, e)
            return False
        log.info("message %s edited for %s", message_id, chat_id)
        return True


class SubscriberRegistry:
    """In-memory recipients: the configured chat first, then /start subscribers."""

    def __init__(self, primary_chat_id: str = ""):
        self.primary_chat_id = str(primary_chat_id or "").strip()
        self._subscribers: List[str] = []
        self._lock = threading.Lock()

    def subscribe(self, chat_id: str) -> bool:
        chat_id = str(chat_id)
        with self._lock:
            if chat_id in self._subscribers:
                return False
            self._subscribers.append(chat_id)
            return True

    def unsubscribe(self, chat_id: str) -> bool:
        chat_id = str(chat_id)
        with self._lock:
            if chat_id not in self._subscribers:
                return False
            self._subscribers.remove(chat_id)
            return True

    def is_subscribed(self, chat_id: str) -> bool:
        with self._lock:
            return str(chat_id) in self._subscribers

    def recipients(self) -> List[str]:
        with self._lock:
            out = [self.primary_chat_id] if self.primary_chat_id else []
            out.extend(s for s in self._subscribers if s != self.primary_chat_id)
            return out


class SignalNotifier:
    """Broadcasts signal messages and edits every delivered copy later."""

    def __init__(self, client: TelegramClient, registry: SubscriberRegistry):
        self.client = client
        self.registry = registry

    def announce(self, text: str) -> NotificationHandle:
        handle: NotificationHandle = {}
        for chat_id in self.registry.recipients():
            message_id = self.client.send_message(chat_id, text)
            if message_id is not None:
                handle[chat_id] = message_id
        return handle

    def revise(self, handle: NotificationHandle, text: str) -> int:
        edited = 0
        for chat_id, message_id in handle.items():
            if self.client.edit_message(chat_id, message_id, text):
                edited += 1
        return edited

    def handle_command(self, chat_id: str, text: str) -> Optional[str]:
        """
        /start subscribes, /stop unsubscribes. Returns the reply sent,
        or None when the text is not a command we know.
        """
        command = (text or "").strip().split(" ", 1)[0].split("@", 1)[0].lower()
        if command == "/start":
            reply = WELCOME if self.registry.subscribe(chat_id) else ALREADY_SUBSCRIBED
        elif command == "/stop":
            reply = UNSUBSCRIBED if self.registry.unsubscribe(chat_id) else NOT_SUBSCRIBED
        else:
            return None
        self.client.send_message(str(chat_id), reply)
        return reply
