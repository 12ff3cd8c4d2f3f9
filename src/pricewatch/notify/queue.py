from __future__ import annotations
import asyncio
from dataclasses import dataclass

@dataclass(slots=True, frozen=True)
class Notification:
    title: str
    body: str
    tag: str

    def as_text(self) -> str:
        return f"{self.title}\n{self.body}"

@dataclass(slots=True)
class QueueStats:
    enq_ok: int = 0
    enq_drop: int = 0
    deq_ok: int = 0

class NotifyQueue:
    """
    Bounded hand-off between the synchronous send() path and an async
    delivery worker. Putting never blocks: a full queue drops the newest
    notification and counts it.
    """
    def __init__(self, maxsize: int = 2000):
        self._q: asyncio.Queue[Notification] = asyncio.Queue(maxsize=maxsize)
        self.stats = QueueStats()

    def try_put(self, item: Notification) -> bool:
        try:
            self._q.put_nowait(item)
        except asyncio.QueueFull:
            self.stats.enq_drop += 1
            return False
        self.stats.enq_ok += 1
        return True

    async def get(self) -> Notification:
        item = await self._q.get()
        self.stats.deq_ok += 1
        return item

    def drain_nowait(self) -> list[Notification]:
        """Pop everything currently queued (shutdown flush)."""
        out: list[Notification] = []
        while True:
            try:
                out.append(self._q.get_nowait())
            except asyncio.QueueEmpty:
                break
        self.stats.deq_ok += len(out)
        return out

    def qsize(self) -> int:
        return self._q.qsize()
