# src/pricewatch/alerts/engine.py
from __future__ import annotations

import asyncio
from typing import Iterable, Optional

import structlog

from pricewatch.alerts.errors import PermissionDenied, PersistenceFailure
from pricewatch.alerts.formatting import format_alert_body, format_alert_title
from pricewatch.alerts.rules import AlertRule
from pricewatch.alerts.store import RULES_KEY, DurableStore
from pricewatch.notify.capability import NotificationCapability
from pricewatch.utils.backoff import RetrySchedule
from pricewatch.utils.types import PriceUpdate

log = structlog.get_logger("alert_engine")


class AlertRuleEngine:
    """
    Owns the rule set and evaluates prices against it.

    Per rule:  Active --[price crosses target]--> Triggered   (terminal)

    All mutations (add, remove, an evaluation pass) run under one
    asyncio.Lock, so an add/remove never interleaves with a tick's pass.
    The whole collection is written to the store after each mutation.

    Persistence failures:
      - add_rule: rolled back and raised as PersistenceFailure
      - trigger / remove: in-memory state is kept and the save is retried in
        the background with backoff; the notification is never withheld
      - load: if the stored collection could not be read, writes are refused
        until a later load() succeeds, so the unread document is never
        overwritten
    """

    def __init__(
        self,
        store: DurableStore,
        notifier: NotificationCapability,
        *,
        store_key: str = RULES_KEY,
        retry_initial_s: float = 0.5,
        retry_max_s: float = 30.0,
        retry_attempts: int = 8,
    ):
        self.store = store
        self.notifier = notifier
        self.store_key = store_key
        self.retry = RetrySchedule(initial_s=retry_initial_s, max_s=retry_max_s, attempts=retry_attempts)

        # insertion order == creation order; replacing a value keeps its slot
        self._rules: dict[str, AlertRule] = {}
        self._lock = asyncio.Lock()
        self._retry_task: Optional[asyncio.Task] = None
        self._store_unread = False

    # ---------- lifecycle ----------

    async def load(self) -> int:
        """
        Restore rules from the store (start-up). Returns the number loaded.
        Raises PersistenceFailure if the stored collection cannot be read;
        the engine then refuses writes until a load succeeds.
        """
        try:
            rules = await self.store.load(self.store_key)
        except PersistenceFailure:
            self._store_unread = True
            log.error("rules_restore_failed_writes_blocked", key=self.store_key)
            raise
        async with self._lock:
            self._rules = {r.id: r for r in (rules or [])}
            self._store_unread = False
        log.info("rules_restored", total=len(self._rules), active=len(self.all_active()))
        return len(self._rules)

    async def close(self) -> None:
        if self._retry_task and not self._retry_task.done():
            self._retry_task.cancel()
            try:
                await self._retry_task
            except asyncio.CancelledError:
                pass
        self._retry_task = None

    # ---------- rule lifecycle ----------

    async def add_rule(
        self,
        token_id: str,
        symbol: str,
        target_price: float,
        condition: str,
        current_price: float,
    ) -> str:
        # validate before touching permission; raises ValidationError
        rule = AlertRule.create(token_id, symbol, target_price, condition, current_price)

        # prompt outside the lock; a slow answer must not stall ticks
        perm = self.notifier.permission_state()
        if perm == "default":
            perm = await self.notifier.request_permission()
        if perm != "granted":
            log.info("rule_rejected_permission", token_id=token_id, permission=perm)
            raise PermissionDenied(f"notification permission is {perm!r}")

        async with self._lock:
            if self._store_unread:
                raise PersistenceFailure("stored rules were never read; refusing to overwrite them")
            self._rules[rule.id] = rule
            if not await self.store.save(self.store_key, list(self._rules.values())):
                del self._rules[rule.id]
                raise PersistenceFailure(f"could not persist rule for {symbol}")

        log.info(
            "rule_added",
            rule_id=rule.id,
            token_id=token_id,
            symbol=symbol,
            condition=rule.condition,
            target=rule.target_price,
            ref=rule.reference_price,
        )
        return rule.id

    async def remove_rule(self, rule_id: str) -> bool:
        async with self._lock:
            rule = self._rules.pop(rule_id, None)
            if rule is None:
                return False
            log.info("rule_removed", rule_id=rule_id, triggered=rule.triggered)
            await self._persist_or_retry()
        return True

    # ---------- evaluation ----------

    async def evaluate(self, token_id: str, current_price: float) -> list[AlertRule]:
        async with self._lock:
            fired = self._evaluate_locked(token_id, current_price)
            if fired:
                await self._persist_or_retry()
        return fired

    async def evaluate_batch(self, updates: Iterable[PriceUpdate]) -> list[AlertRule]:
        """One tick's worth of updates: one lock acquisition, at most one save."""
        fired: list[AlertRule] = []
        async with self._lock:
            for u in updates:
                fired.extend(self._evaluate_locked(u.token_id, u.price))
            if fired:
                await self._persist_or_retry()
        return fired

    def _evaluate_locked(self, token_id: str, price: float) -> list[AlertRule]:
        fired: list[AlertRule] = []
        for rule in list(self._rules.values()):
            if rule.triggered or rule.token_id != token_id:
                continue
            if not rule.crossed(price):
                continue
            done = rule.mark_triggered(price)
            self._rules[rule.id] = done
            fired.append(done)
            log.info(
                "rule_triggered",
                rule_id=done.id,
                symbol=done.token_symbol,
                condition=done.condition,
                target=done.target_price,
                price=price,
            )
            try:
                self.notifier.send(
                    format_alert_title(done),
                    format_alert_body(done, price),
                    done.id,
                )
            except Exception as e:
                log.warning("notification_send_failed", rule_id=done.id, err=str(e))
        return fired

    # ---------- queries ----------

    def get(self, rule_id: str) -> Optional[AlertRule]:
        return self._rules.get(rule_id)

    def all_rules(self) -> list[AlertRule]:
        return list(self._rules.values())

    def all_active(self) -> list[AlertRule]:
        return [r for r in self._rules.values() if not r.triggered]

    def active_rules_for(self, token_id: str) -> list[AlertRule]:
        return [r for r in self._rules.values() if not r.triggered and r.token_id == token_id]

    # ---------- persistence ----------

    async def _persist_or_retry(self) -> None:
        # caller holds self._lock
        if self._store_unread:
            log.error("rule_save_blocked_unread_store", rules=len(self._rules))
            return
        if await self.store.save(self.store_key, list(self._rules.values())):
            return
        log.warning("rule_save_deferred", rules=len(self._rules))
        if self._retry_task is None or self._retry_task.done():
            self._retry_task = asyncio.create_task(self._retry_save(), name="rule-store-retry")

    async def _retry_save(self) -> None:
        for attempt, delay in enumerate(self.retry.delays(), start=1):
            await asyncio.sleep(delay)
            async with self._lock:
                if self._store_unread:
                    return
                # whole-collection overwrite: always the current snapshot
                ok = await self.store.save(self.store_key, list(self._rules.values()))
            if ok:
                log.info("rule_save_recovered", attempt=attempt)
                return
            log.warning("rule_save_retry_failed", attempt=attempt)
        log.error("rule_save_gave_up", attempts=self.retry.attempts)
