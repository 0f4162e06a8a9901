"""Messaging relay and the bounded queue that dispatches to it."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Protocol

import httpx

from contentintel.errors import DeliveryError

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE = 4096
TRUNCATION_MARKER = "\n[...]"


def fit_message(text: str, limit: int = TELEGRAM_MAX_MESSAGE) -> str:
    """Trim ``text`` to ``limit`` chars at a line boundary so no HTML tag is cut."""
    if len(text) <= limit:
        return text
    room = limit - len(TRUNCATION_MARKER)
    cut = text.rfind("\n", 0, room + 1)
    if cut <= 0:
        cut = room
        # stop before the last tag unless it is a complete closing tag
        tag = text.rfind("<", 0, cut)
        tag_end = text.find(">", tag) if tag != -1 else -1
        if tag != -1 and not (text.startswith("</", tag) and 0 <= tag_end < cut):
            cut = tag
        entity = text.rfind("&", 0, cut)
        if entity > text.rfind(";", 0, cut):
            cut = entity
    return text[:cut].rstrip() + TRUNCATION_MARKER


class MessagingRelay(Protocol):
    def post_message(self, channel_id: str, text: str) -> None: ...


class TelegramRelay:
    """Post HTML messages through the Telegram Bot API."""

    def __init__(self, bot_token: str, timeout: float = 15.0) -> None:
        self._client = httpx.Client(base_url=f"{TELEGRAM_API_BASE}/bot{bot_token}", timeout=timeout)

    def post_message(self, channel_id: str, text: str) -> None:
        try:
            resp = self._client.post(
                "/sendMessage",
                json={
                    "chat_id": channel_id,
                    "text": fit_message(text),
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Telegram send failed: {exc}") from exc

    def close(self) -> None:
        self._client.close()


@dataclass
class _Message:
    channel_id: str
    text: str


class DeliveryQueue:
    """Bounded FIFO of relay messages with its own dispatch thread.

    ``enqueue`` never blocks: it returns False when the queue is full or
    closed. ``flush`` waits until every message enqueued before the call
    has been handed to the relay (successfully or not). Consecutive sends
    are spaced by at least ``min_interval`` seconds.
    """

    def __init__(
        self, relay: MessagingRelay, maxsize: int = 100, min_interval: float = 1.0
    ) -> None:
        self._relay = relay
        self._queue: queue.Queue[_Message | None] = queue.Queue(maxsize=maxsize)
        self._min_interval = min_interval
        self._closed = False
        self._last_sent = 0.0
        self.sent = 0
        self.failed = 0
        self._thread = threading.Thread(target=self._dispatch_loop, name="relay-dispatch", daemon=True)
        self._thread.start()

    def enqueue(self, channel_id: str, text: str) -> bool:
        if self._closed:
            logger.warning("Relay queue closed, dropping message to %s", channel_id)
            return False
        try:
            self._queue.put_nowait(_Message(channel_id, text))
        except queue.Full:
            logger.warning("Relay queue full, dropping message to %s", channel_id)
            return False
        return True

    def flush(self, timeout: float | None = None) -> bool:
        """Block until the queue drains. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: float | None = 10.0) -> None:
        """Flush, then stop the dispatch thread."""
        if self._closed:
            return
        self.flush(timeout)
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            logger.warning("Relay queue still full at close, dispatch thread left running")
            return
        self._thread.join(timeout)

    def _dispatch_loop(self) -> None:
        while True:
            message = self._queue.get()
            try:
                if message is None:
                    return
                wait = self._min_interval - (time.monotonic() - self._last_sent)
                if wait > 0:
                    time.sleep(wait)
                try:
                    self._relay.post_message(message.channel_id, message.text)
                    self.sent += 1
                except Exception:
                    self.failed += 1
                    logger.exception("Relay delivery to %s failed", message.channel_id)
                finally:
                    self._last_sent = time.monotonic()
            finally:
                self._queue.task_done()


def build_relay_queue(settings) -> DeliveryQueue | None:
    """A dispatch queue over Telegram, or None when no bot token is set."""
    if not settings.telegram_bot_token:
        return None
    return DeliveryQueue(
        TelegramRelay(settings.telegram_bot_token),
        maxsize=settings.relay_queue_size,
        min_interval=settings.relay_min_interval_seconds,
    )
