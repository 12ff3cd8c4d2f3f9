from __future__ import annotations

import time
from datetime import datetime, timezone

# --- clock helpers ---

def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()

def monotonic_s() -> float:
    """Monotonic seconds; only meaningful relative to other readings."""
    return time.monotonic()

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)
