# src/pricewatch/config.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Literal

from pricewatch.utils.types import Permission

StoreBackend = Literal["file", "redis", "memory"]

_ALERT_RE = re.compile(r"^\s*([A-Za-z0-9_.-]+)\s*([<>])\s*([0-9.eE+-]+)\s*$")


@dataclass(slots=True)
class SeedAlert:
    symbol: str
    condition: str     # "above" | "below"
    target: float


@dataclass(slots=True)
class AppConfig:
    tick_interval_s: float = 3.0
    store_backend: StoreBackend = "file"
    store_dir: str = ".pricewatch"
    redis_url: str = "redis://localhost:6379/0"
    notify_permission: Permission = "default"
    symbols: dict[str, float] = field(default_factory=dict)   # SYMBOL -> initial price
    alerts: list[SeedAlert] = field(default_factory=list)
    print_ticks: bool = False


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def parse_symbols(raw: str) -> dict[str, float]:
    """ "SOL=100,BTC=65000" -> {"SOL": 100.0, "BTC": 65000.0} """
    out: dict[str, float] = {}
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        sym, sep, px = part.partition("=")
        if not sep:
            raise ValueError(f"SYMBOLS entry needs SYMBOL=PRICE, got {part!r}")
        price = float(px)
        if not price > 0.0:
            raise ValueError(f"SYMBOLS price must be positive, got {part!r}")
        out[sym.strip().upper()] = price
    return out


def parse_alerts(raw: str) -> list[SeedAlert]:
    """ "SOL>110,BTC<60000" -> [SeedAlert(SOL, above, 110), SeedAlert(BTC, below, 60000)] """
    out: list[SeedAlert] = []
    for part in raw.split(","):
        if not part.strip():
            continue
        m = _ALERT_RE.match(part)
        if m is None:
            raise ValueError(f"ALERTS entry needs SYMBOL>PRICE or SYMBOL<PRICE, got {part!r}")
        sym, op, px = m.groups()
        out.append(SeedAlert(sym.upper(), "above" if op == ">" else "below", float(px)))
    return out


def config_from_env() -> AppConfig:
    backend = os.getenv("STORE_BACKEND", "file").lower()
    if backend not in ("file", "redis", "memory"):
        raise ValueError(f"STORE_BACKEND must be file|redis|memory, got {backend!r}")
    perm = os.getenv("NOTIFY_PERMISSION", "default").lower()
    if perm not in ("default", "granted", "denied"):
        raise ValueError(f"NOTIFY_PERMISSION must be default|granted|denied, got {perm!r}")
    return AppConfig(
        tick_interval_s=float(os.getenv("TICK_INTERVAL_S", "3.0")),
        store_backend=backend,  # type: ignore[arg-type]
        store_dir=os.getenv("STORE_DIR", ".pricewatch"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        notify_permission=perm,  # type: ignore[arg-type]
        symbols=parse_symbols(os.getenv("SYMBOLS", "SOL=100,BTC=65000,ETH=3200")),
        alerts=parse_alerts(os.getenv("ALERTS", "")),
        print_ticks=_flag("PRINT_TICKS"),
    )
