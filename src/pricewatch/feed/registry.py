# src/pricewatch/feed/registry.py
from __future__ import annotations

from typing import Optional

import structlog

from pricewatch.utils.time import monotonic_s
from pricewatch.utils.types import PriceUpdate, Subscription

log = structlog.get_logger("registry")


class SubscriptionRegistry:
    """
    Which tokens are live, and the last known price of each.

    - one Subscription per token_id; subscribe() on a live token is a no-op
    - unsubscribe() drops the subscription but keeps the last PriceUpdate
      readable through latest() until clear() is called
    - all operations are synchronous and never await, so they cannot land
      in the middle of a tick pass
    """

    def __init__(self):
        self._subs: dict[str, Subscription] = {}
        self._latest: dict[str, PriceUpdate] = {}

    def subscribe(self, token_id: str, symbol: str, initial_price: float) -> None:
        if token_id in self._subs:
            return
        px = float(initial_price)
        self._subs[token_id] = Subscription(token_id=token_id, symbol=symbol, last_price=px)
        self._latest[token_id] = PriceUpdate(
            token_id=token_id,
            symbol=symbol,
            price=px,
            change_24h=0.0,
            volume_24h=0.0,
            timestamp=monotonic_s(),
        )
        log.info("subscribed", token_id=token_id, symbol=symbol, price=px)

    def unsubscribe(self, token_id: str) -> None:
        if self._subs.pop(token_id, None) is not None:
            log.info("unsubscribed", token_id=token_id)

    def clear(self, token_id: str) -> None:
        """Forget the last observed price of a token that is no longer live."""
        if token_id not in self._subs:
            self._latest.pop(token_id, None)

    def latest(self, token_id: str) -> Optional[PriceUpdate]:
        return self._latest.get(token_id)

    def is_subscribed(self, token_id: str) -> bool:
        return token_id in self._subs

    def snapshot(self) -> list[Subscription]:
        """Copies of the live subscriptions, in subscription order."""
        return [Subscription(s.token_id, s.symbol, s.last_price) for s in self._subs.values()]

    def record(self, update: PriceUpdate) -> None:
        """
        Store a freshly produced update. An update for a token unsubscribed
        while its tick was in flight still lands in latest().
        """
        self._latest[update.token_id] = update
        sub = self._subs.get(update.token_id)
        if sub is not None:
            sub.last_price = update.price

    def __len__(self) -> int:
        return len(self._subs)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._subs
