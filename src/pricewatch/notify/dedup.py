from __future__ import annotations
import time

class TagDeduper:
    """
    TTL-based dedupe cache keyed by notification tag, with max size.
    A tag delivered once is suppressed until it expires (ttl_s).
    """
    def __init__(self, ttl_s: float, max_size: int = 10_000):
        self.ttl_s = ttl_s
        self.max_size = max_size
        self._store: dict[str, float] = {}  # tag -> expire_ts

    def _now(self) -> float:
        return time.monotonic()

    def seen_recently(self, tag: str) -> bool:
        now = self._now()
        exp = self._store.get(tag)
        if exp is None:
            return False
        if exp < now:
            # expired; cleanup
            self._store.pop(tag, None)
            return False
        return True

    def mark(self, tag: str) -> None:
        # opportunistic cleanup when large
        if len(self._store) > self.max_size:
            now = self._now()
            for k, exp in list(self._store.items()):
                if exp < now:
                    self._store.pop(k, None)
        self._store[tag] = self._now() + self.ttl_s

    def check_and_mark(self, tag: str) -> bool:
        """True if tag is new (and now marked); False if a duplicate."""
        if self.seen_recently(tag):
            return False
        self.mark(tag)
        return True

    def __len__(self) -> int:
        return len(self._store)
