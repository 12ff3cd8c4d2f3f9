# src/pricewatch/notify/capability.py
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Protocol, Sequence

import structlog

from pricewatch.notify.dedup import TagDeduper
from pricewatch.utils.types import Permission

log = structlog.get_logger("notify")

PERMISSIONS: tuple[str, ...] = ("default", "granted", "denied")


class NotificationCapability(Protocol):
    def permission_state(self) -> Permission: ...
    async def request_permission(self) -> Permission: ...
    def send(self, title: str, body: str, dedup_tag: str) -> None: ...


class NotificationSink(Protocol):
    def deliver(self, title: str, body: str, tag: str) -> None: ...


PromptFn = Callable[[], Awaitable[bool]]


class NotificationCenter:
    """
    Permission-gated notification capability.

    Lifecycle of the permission:
      - starts at `initial` ("default" unless configured)
      - request_permission() asks `prompt` once while still "default" and
        remembers the answer; later calls return the remembered state
      - without a prompt, a "default" request resolves to "denied"

    send() is a silent no-op unless granted. Tags are de-duplicated for
    `dedup_ttl_s` so a retried send for the same event is delivered once.
    Each sink is isolated: one failing sink does not stop the others.
    """

    def __init__(
        self,
        sinks: Sequence[NotificationSink] = (),
        *,
        initial: Permission = "default",
        prompt: Optional[PromptFn] = None,
        dedup_ttl_s: float = 24 * 3600.0,
    ):
        if initial not in PERMISSIONS:
            raise ValueError(f"permission must be one of {PERMISSIONS}, got {initial!r}")
        self.sinks: list[NotificationSink] = list(sinks)
        self._state: Permission = initial
        self._prompt = prompt
        self._prompt_lock = asyncio.Lock()
        self._dedupe = TagDeduper(ttl_s=dedup_ttl_s, max_size=50_000)
        self.sent = 0
        self.suppressed = 0

    def add_sink(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    # ---------- permission ----------

    def permission_state(self) -> Permission:
        return self._state

    async def request_permission(self) -> Permission:
        # concurrent callers share one prompt
        async with self._prompt_lock:
            if self._state != "default":
                return self._state
            granted = False
            if self._prompt is not None:
                try:
                    granted = bool(await self._prompt())
                except Exception as e:
                    log.warning("permission_prompt_failed", err=str(e))
                    granted = False
            self._state = "granted" if granted else "denied"
            log.info("notification_permission", state=self._state)
            return self._state

    # ---------- delivery ----------

    def send(self, title: str, body: str, dedup_tag: str) -> None:
        if self._state != "granted":
            return
        if not self._dedupe.check_and_mark(dedup_tag):
            self.suppressed += 1
            log.info("notification_duplicate_suppressed", tag=dedup_tag)
            return
        self.sent += 1
        for sink in self.sinks:
            try:
                sink.deliver(title, body, dedup_tag)
            except Exception as e:
                log.warning("notification_sink_failed", sink=type(sink).__name__, err=str(e), tag=dedup_tag)
