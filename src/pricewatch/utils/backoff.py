from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterator


@dataclass(slots=True, frozen=True)
class RetrySchedule:
    """
    Bounded, jittered exponential retry plan.

    delays() yields at most `attempts` waits: initial_s, 2*initial_s, ...
    capped at max_s, each scaled by a random factor in [1-ratio, 1+ratio].
    Used for store write retries and outgoing notification retries.
    """
    initial_s: float = 0.5
    max_s: float = 30.0
    attempts: int = 5
    ratio: float = 0.2

    def __post_init__(self):
        if self.initial_s <= 0 or self.max_s < self.initial_s:
            raise ValueError(f"need 0 < initial_s <= max_s, got {self.initial_s}, {self.max_s}")
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if not 0.0 <= self.ratio < 1.0:
            raise ValueError(f"ratio must be in [0, 1), got {self.ratio}")

    def base_delays(self) -> Iterator[float]:
        """Unjittered waits, one per attempt."""
        v = self.initial_s
        for _ in range(self.attempts):
            yield v
            v = min(v * 2.0, self.max_s)

    def delays(self, rng: random.Random | None = None) -> Iterator[float]:
        rand = (rng or random).random
        lo = 1.0 - self.ratio
        span = 2.0 * self.ratio
        for base in self.base_delays():
            yield base * (lo + span * rand())
