from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp
import structlog

from pricewatch.notify.queue import Notification, NotifyQueue
from pricewatch.utils.backoff import RetrySchedule

log = structlog.get_logger("telegram")

# --------- small rate limiter (token bucket) ----------

class RateLimiter:
    def __init__(self, rate_per_sec: float, burst: int = 1):
        self.rate = float(rate_per_sec)
        self.capacity = int(burst)
        self.tokens = float(burst)
        self.updated: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self):
        loop = asyncio.get_running_loop()
        async with self._lock:
            now = loop.time()
            if self.updated is None:
                self.updated = now
            # refill
            self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
            self.updated = now
            # wait if no token
            if self.tokens < 1.0:
                needed = 1.0 - self.tokens
                await asyncio.sleep(needed / self.rate)
                self.updated = loop.time()
                self.tokens = 1.0
            self.tokens -= 1.0

# --------- config & client ----------

@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    chat_id: str                # personal chat id or group id
    parse_mode: Optional[str] = None  # "HTML" or "MarkdownV2" or None
    api_base: str = "https://api.telegram.org"
    timeout_s: float = 8.0
    per_chat_rate_per_sec: float = 1.0
    per_chat_burst: int = 3
    max_retries: int = 5
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0
    queue_maxsize: int = 2000


def config_from_env() -> TelegramConfig:
    """Build from TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID. Raises if either is missing."""
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    chat_id = os.getenv("TELEGRAM_CHAT_ID")
    if not token or not chat_id:
        raise RuntimeError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must be set")
    return TelegramConfig(
        bot_token=token,
        chat_id=chat_id,
        parse_mode=os.getenv("TELEGRAM_PARSE_MODE") or None,
    )


class TelegramNotifier:
    """
    NotificationCenter sink that forwards to a Telegram chat.

    deliver() is synchronous and only enqueues; a background worker drains
    the queue and posts with rate limiting and retry w/ backoff.
    """
    def __init__(
        self,
        cfg: TelegramConfig,
        queue: Optional[NotifyQueue] = None,
        format_fn: Optional[Callable[[Notification], str]] = None,
    ):
        self.cfg = cfg
        self.q = queue or NotifyQueue(maxsize=cfg.queue_maxsize)
        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._rl = RateLimiter(rate_per_sec=cfg.per_chat_rate_per_sec, burst=cfg.per_chat_burst)
        self._retry = RetrySchedule(
            initial_s=cfg.initial_backoff_s, max_s=cfg.max_backoff_s, attempts=cfg.max_retries
        )
        self._format_fn = format_fn or Notification.as_text

    def deliver(self, title: str, body: str, tag: str) -> None:
        if not self.q.try_put(Notification(title=title, body=body, tag=tag)):
            log.warning("telegram_queue_full_dropped", tag=tag, dropped=self.q.stats.enq_drop)

    async def start(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="telegram-notifier")

    async def stop(self):
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        pending = self.q.drain_nowait()
        if pending:
            log.warning("telegram_unsent_on_stop", count=len(pending))
        if self._session:
            await self._session.close()
            self._session = None

    async def _loop(self):
        try:
            while not self._stop.is_set():
                note = await self.q.get()
                text = self._format_fn(note)
                await self._rl.acquire()
                await self._send(text)
        except asyncio.CancelledError:
            return

    async def _send(self, text: str) -> bool:
        assert self._session is not None
        url = f"{self.cfg.api_base}/bot{self.cfg.bot_token}/sendMessage"
        payload = {"chat_id": self.cfg.chat_id, "text": text}
        if self.cfg.parse_mode:
            payload["parse_mode"] = self.cfg.parse_mode

        attempts = self._retry.attempts
        for attempt, delay in enumerate(self._retry.delays(), start=1):
            try:
                async with self._session.post(url, data=payload) as resp:
                    if resp.status == 200:
                        return True
                    detail = await _maybe_text(resp)
                    log.warning("telegram_send_failed", status=resp.status, body=detail, attempt=attempt)
                    if resp.status == 429:
                        # Telegram may include retry_after (seconds)
                        delay = await _retry_after(resp) or delay
                    elif not 500 <= resp.status < 600:
                        # other 4xx: don't retry
                        return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", err=str(e), attempt=attempt)
            if attempt < attempts:
                await asyncio.sleep(delay)
        log.error("telegram_give_up_after_retries", attempts=attempts)
        return False


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"

async def _retry_after(resp: aiohttp.ClientResponse) -> Optional[float]:
    try:
        data = await resp.json(content_type=None)
        ra = data.get("parameters", {}).get("retry_after")
        return float(ra) if ra else None
    except (aiohttp.ClientError, ValueError, AttributeError, TypeError):
        return None
