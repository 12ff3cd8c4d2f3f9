# src/pricewatch/alerts/store.py
from __future__ import annotations

import json
from typing import Any, Optional, Protocol, Sequence

import structlog

from pricewatch.alerts.errors import PersistenceFailure
from pricewatch.alerts.rules import CONDITIONS, AlertRule, validate_target
from storage.kv import KVBackend

log = structlog.get_logger("rule_store")

RULES_KEY = "priceAlerts"
SCHEMA_VERSION = 1


class DurableStore(Protocol):
    # load: None when key is absent; raises PersistenceFailure when unreadable
    async def load(self, key: str) -> Optional[list[AlertRule]]: ...
    async def save(self, key: str, rules: Sequence[AlertRule]) -> bool: ...


# ---------- codec ----------

def rule_to_record(rule: AlertRule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "tokenId": rule.token_id,
        "tokenSymbol": rule.token_symbol,
        "targetPrice": rule.target_price,
        "condition": rule.condition,
        # last observed price; equals the creation price until triggered
        "currentPrice": rule.last_observed_price,
        "referencePrice": rule.reference_price,
        "createdAt": rule.created_at,
        "triggered": rule.triggered,
    }


def rule_from_record(rec: dict[str, Any], *, legacy: bool = False) -> AlertRule:
    condition = rec["condition"]
    if condition not in CONDITIONS:
        raise ValueError(f"unknown condition {condition!r}")
    current = float(rec["currentPrice"])
    return AlertRule(
        id=str(rec["id"]),
        token_id=str(rec["tokenId"]),
        token_symbol=str(rec["tokenSymbol"]),
        target_price=validate_target(rec["targetPrice"]),
        condition=condition,
        # legacy records carry only currentPrice
        reference_price=float(rec.get("referencePrice", current)),
        # legacy records stamped createdAt in epoch milliseconds
        created_at=float(rec["createdAt"]) / 1000.0 if legacy else float(rec["createdAt"]),
        triggered=bool(rec.get("triggered", False)),
        last_observed_price=current,
    )


def encode_rules(rules: Sequence[AlertRule]) -> str:
    return json.dumps(
        {"version": SCHEMA_VERSION, "rules": [rule_to_record(r) for r in rules]},
        separators=(",", ":"),
    )


def decode_rules(payload: str) -> list[AlertRule]:
    """
    Accepts the versioned layout {"version": N, "rules": [...]} and the
    unversioned legacy layout (a bare list of records). Malformed records are
    skipped; a malformed document raises ValueError.
    """
    doc = json.loads(payload)
    legacy = isinstance(doc, list)
    if legacy:
        records = doc
    elif isinstance(doc, dict):
        version = doc.get("version")
        if version != SCHEMA_VERSION:
            raise ValueError(f"unsupported rule schema version {version!r}")
        records = doc.get("rules") or []
    else:
        raise ValueError(f"unexpected rule document type {type(doc).__name__}")

    out: list[AlertRule] = []
    for rec in records:
        try:
            out.append(rule_from_record(rec, legacy=legacy))
        except (KeyError, TypeError, ValueError) as e:
            log.warning("rule_record_skipped", err=str(e), record=rec)
    return out


# ---------- store ----------

class RuleStore:
    """
    DurableStore over any KV backend.
      - load(): None only when nothing is stored under key; a backend error
        or an unreadable document raises PersistenceFailure so the caller
        never mistakes it for "no rules" and overwrites it
      - save(): backend errors are logged and reported as False
    """

    def __init__(self, kv: KVBackend):
        self.kv = kv

    async def load(self, key: str = RULES_KEY) -> Optional[list[AlertRule]]:
        try:
            payload = await self.kv.get(key)
        except Exception as e:
            log.warning("rule_store_read_failed", key=key, err=str(e))
            raise PersistenceFailure(f"could not read {key!r}: {e}") from e
        if payload is None:
            return None
        try:
            rules = decode_rules(payload)
        except ValueError as e:
            log.error("rule_store_unreadable", key=key, err=str(e))
            raise PersistenceFailure(f"stored {key!r} is unreadable: {e}") from e
        log.info("rule_store_loaded", key=key, count=len(rules))
        return rules

    async def save(self, key: str, rules: Sequence[AlertRule]) -> bool:
        try:
            await self.kv.set(key, encode_rules(rules))
            return True
        except Exception as e:
            log.warning("rule_store_write_failed", key=key, err=str(e), count=len(rules))
            return False
