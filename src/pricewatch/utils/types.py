from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

# ---- feed-level primitives ----

@dataclass(slots=True)
class Subscription:
    token_id: str
    symbol: str
    last_price: float

@dataclass(slots=True, frozen=True)
class PriceUpdate:
    """
    One tick for one token. Superseded by the next tick, never mutated.
    """
    token_id: str
    symbol: str
    price: float
    change_24h: float   # percent, additive running approximation
    volume_24h: float
    timestamp: float    # monotonic seconds

# ---- alerting / notification domain ----

Condition = Literal["above", "below"]

Permission = Literal["default", "granted", "denied"]
