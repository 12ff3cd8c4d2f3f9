# src/pricewatch/alerts/rules.py
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, replace

from pricewatch.alerts.errors import ValidationError
from pricewatch.utils.time import utc_now_s
from pricewatch.utils.types import Condition

CONDITIONS: tuple[str, ...] = ("above", "below")


@dataclass(slots=True, frozen=True)
class AlertRule:
    """
    Price-threshold rule on one token.
    - condition = "above" → fires when price >= target_price
                  "below" → fires when price <= target_price
    Active until the first crossing, then frozen as triggered. The only
    transition is `mark_triggered()`, which returns a new value.
    """
    id: str
    token_id: str
    token_symbol: str
    target_price: float
    condition: Condition
    reference_price: float          # price when the rule was created
    created_at: float               # epoch seconds
    triggered: bool = False
    last_observed_price: float = 0.0

    @classmethod
    def create(
        cls,
        token_id: str,
        symbol: str,
        target_price: float,
        condition: str,
        current_price: float,
    ) -> "AlertRule":
        target = validate_target(target_price)
        if condition not in CONDITIONS:
            raise ValidationError(f"condition must be one of {CONDITIONS}, got {condition!r}")
        ref = float(current_price)
        return cls(
            id=uuid.uuid4().hex[:12],
            token_id=token_id,
            token_symbol=symbol,
            target_price=target,
            condition=condition,  # type: ignore[arg-type]
            reference_price=ref,
            created_at=utc_now_s(),
            triggered=False,
            last_observed_price=ref,
        )

    @property
    def active(self) -> bool:
        return not self.triggered

    def crossed(self, price: float) -> bool:
        if self.condition == "above":
            return price >= self.target_price
        return price <= self.target_price

    def mark_triggered(self, price: float) -> "AlertRule":
        if self.triggered:
            raise ValueError(f"rule {self.id} already triggered")
        return replace(self, triggered=True, last_observed_price=float(price))


def validate_target(target_price) -> float:
    # bool is an int subclass; reject it explicitly
    if isinstance(target_price, bool) or not isinstance(target_price, (int, float)):
        raise ValidationError(f"target price must be a number, got {target_price!r}")
    target = float(target_price)
    if not math.isfinite(target) or target <= 0.0:
        raise ValidationError(f"target price must be finite and > 0, got {target_price!r}")
    return target
