# src/pricewatch/service.py
from __future__ import annotations

from typing import Optional

import structlog

from pricewatch.alerts.engine import AlertRuleEngine
from pricewatch.alerts.rules import AlertRule
from pricewatch.alerts.store import DurableStore
from pricewatch.feed.registry import SubscriptionRegistry
from pricewatch.feed.ticker import DeltaFn, TickerConfig, TickGenerator
from pricewatch.notify.capability import NotificationCapability
from pricewatch.utils.types import PriceUpdate

log = structlog.get_logger("pricewatch")


class PriceWatch:
    """
    Process-wide facade over registry + engine + ticker.

    Read API:  latest(), active_rules_for(), all_active()
    Write API: subscribe(), unsubscribe(), add_rule(), remove_rule()

    Usage:
        pw = PriceWatch(store=RuleStore(FileKV(".pricewatch")), notifier=center)
        await pw.start()              # restores rules, starts ticking
        pw.subscribe("solana", "SOL", 100.0)
        rule_id = await pw.add_rule("solana", "SOL", 110.0, "above", 100.0)
        ...
        await pw.stop()
    """

    def __init__(
        self,
        store: DurableStore,
        notifier: NotificationCapability,
        ticker_cfg: Optional[TickerConfig] = None,
        delta_fn: Optional[DeltaFn] = None,
    ):
        self.registry = SubscriptionRegistry()
        self.engine = AlertRuleEngine(store, notifier)
        self.ticker = TickGenerator(self.registry, self.engine, ticker_cfg, delta_fn=delta_fn)
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self.engine.load()
        await self.ticker.start()
        self._started = True
        log.info("pricewatch_started")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.ticker.stop()
        await self.engine.close()
        self._started = False
        log.info("pricewatch_stopped")

    # ---- feed ----

    def subscribe(self, token_id: str, symbol: str, initial_price: float) -> None:
        self.registry.subscribe(token_id, symbol, initial_price)

    def unsubscribe(self, token_id: str) -> None:
        self.registry.unsubscribe(token_id)

    def latest(self, token_id: str) -> Optional[PriceUpdate]:
        return self.registry.latest(token_id)

    # ---- rules ----

    async def add_rule(
        self,
        token_id: str,
        symbol: str,
        target_price: float,
        condition: str,
        current_price: float,
    ) -> str:
        return await self.engine.add_rule(token_id, symbol, target_price, condition, current_price)

    async def remove_rule(self, rule_id: str) -> bool:
        return await self.engine.remove_rule(rule_id)

    def active_rules_for(self, token_id: str) -> list[AlertRule]:
        return self.engine.active_rules_for(token_id)

    def all_active(self) -> list[AlertRule]:
        return self.engine.all_active()
