# src/pricewatch/notify/console.py
from __future__ import annotations
import structlog
from typing import Callable, Optional

log = structlog.get_logger("notifier")

class ConsoleNotifier:
    """Prints notifications to stdout. Sink for NotificationCenter."""

    def __init__(self, format_fn: Optional[Callable[[str, str, str], str]] = None):
        self._format_fn = format_fn

    def deliver(self, title: str, body: str, tag: str) -> None:
        if self._format_fn:
            try:
                print(self._format_fn(title, body, tag), flush=True)
                return
            except Exception as e:
                log.warning("console_format_failed", err=str(e), tag=tag)
        # fallback (raw)
        one_line = body.replace("\n", " | ")
        print(f"[ALERT] {title}: {one_line} (tag={tag})", flush=True)
