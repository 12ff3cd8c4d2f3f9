# src/pricewatch/feed/ticker.py
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from pricewatch.alerts.engine import AlertRuleEngine
from pricewatch.feed.registry import SubscriptionRegistry
from pricewatch.utils.time import monotonic_s
from pricewatch.utils.types import PriceUpdate, Subscription

log = structlog.get_logger("ticker")

DeltaFn = Callable[[Subscription], float]


@dataclass(slots=True)
class TickerConfig:
    interval_s: float = 3.0
    max_step: float = 0.005          # ±0.5% per tick
    seed_volume: float = 1_000_000.0  # volume reported once a token has ticked
    seed: Optional[int] = None


class TickGenerator:
    """
    Simulated price feed: one recurring task, one pass per interval.

    Each pass, for every subscribed token:
        delta      = uniform(-max_step, +max_step)
        new_price  = last_price * (1 + delta)
        change_24h = prev change_24h + delta * 100
    change_24h is an additive running figure, not a true 24h window; the
    simulated feed has no 24h baseline to compare against.

    The pass then records the updates in the registry, evaluates alert rules
    (persistence included) and fans the updates out to sink queues. The
    next pass is only scheduled after that completes, so passes never overlap.
    Tokens unsubscribed mid-pass drop out at the next pass.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        engine: AlertRuleEngine,
        cfg: Optional[TickerConfig] = None,
        delta_fn: Optional[DeltaFn] = None,
    ):
        self.registry = registry
        self.engine = engine
        self.cfg = cfg or TickerConfig()
        self._rng = random.Random(self.cfg.seed)
        self._delta_fn = delta_fn or self._random_walk
        self._sinks: list[asyncio.Queue] = []
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.dropped = 0

    # ---------- lifecycle ----------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="tick-generator")
        log.info("ticker_started", interval_s=self.cfg.interval_s)

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            # let an in-flight pass finish; it is one unit of work
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=self.cfg.interval_s + 5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
            log.info("ticker_stopped", ticks=self.ticks)

    async def _loop(self) -> None:
        # first pass one interval after start, like a plain interval timer
        try:
            while True:
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.cfg.interval_s)
                    return
                except asyncio.TimeoutError:
                    pass
                try:
                    await self.tick()
                except Exception as e:
                    log.warning("tick_failed", err=str(e))
        except asyncio.CancelledError:
            return

    # ---------- sinks ----------

    def add_sink(self, q: asyncio.Queue) -> None:
        self._sinks.append(q)

    def remove_sink(self, q: asyncio.Queue) -> None:
        try:
            self._sinks.remove(q)
        except ValueError:
            pass

    def _fanout(self, updates: list[PriceUpdate]) -> None:
        for u in updates:
            for q in self._sinks:
                try:
                    q.put_nowait(u)
                except asyncio.QueueFull:
                    # slow consumer; skip to keep the pass short
                    self.dropped += 1

    # ---------- one pass ----------

    async def tick(self) -> list[PriceUpdate]:
        subs = self.registry.snapshot()
        self.ticks += 1
        if not subs:
            return []
        updates = []
        for s in subs:
            u = self._advance(s)
            if u.price > 0.0:
                updates.append(u)
            else:
                log.warning("tick_nonpositive_price_skipped", token_id=s.token_id, price=u.price)
        await self.publish(updates)
        return updates

    async def publish(self, updates: list[PriceUpdate]) -> None:
        """
        Record, evaluate, fan out. A real streaming source can call this in
        place of the random walk.
        """
        for u in updates:
            self.registry.record(u)
        fired = await self.engine.evaluate_batch(updates)
        self._fanout(updates)
        log.debug("tick", n=len(updates), fired=len(fired))

    def _advance(self, sub: Subscription) -> PriceUpdate:
        prev = self.registry.latest(sub.token_id)
        delta = float(self._delta_fn(sub))
        new_price = sub.last_price * (1.0 + delta)
        change = (prev.change_24h if prev else 0.0) + delta * 100.0
        volume = prev.volume_24h if prev and prev.volume_24h else self.cfg.seed_volume
        return PriceUpdate(
            token_id=sub.token_id,
            symbol=sub.symbol,
            price=new_price,
            change_24h=change,
            volume_24h=volume,
            timestamp=monotonic_s(),
        )

    def _random_walk(self, sub: Subscription) -> float:
        return self._rng.uniform(-self.cfg.max_step, self.cfg.max_step)
