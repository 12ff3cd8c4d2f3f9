# src/pricewatch/main.py
import asyncio
import os

import structlog
from dotenv import load_dotenv
from redis.asyncio import Redis

from pricewatch.alerts.errors import AlertError
from pricewatch.alerts.formatting import format_rule_line
from pricewatch.alerts.store import RuleStore
from pricewatch.config import AppConfig, config_from_env
from pricewatch.feed.ticker import TickerConfig
from pricewatch.notify.capability import NotificationCenter
from pricewatch.notify.console import ConsoleNotifier
from pricewatch.notify.telegram import TelegramNotifier, config_from_env as telegram_config_from_env
from pricewatch.service import PriceWatch
from pricewatch.utils.types import PriceUpdate
from storage.kv import FileKV, MemoryKV, RedisKV

load_dotenv()
log = structlog.get_logger()


# ---------------------------
# Builders
# ---------------------------

def build_kv(cfg: AppConfig):
    if cfg.store_backend == "redis":
        return RedisKV(Redis.from_url(cfg.redis_url))
    if cfg.store_backend == "memory":
        return MemoryKV()
    return FileKV(cfg.store_dir)


async def ask_permission() -> bool:
    """Interactive yes/no on stdin, off the event loop."""
    answer = await asyncio.to_thread(input, "Allow price alert notifications? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


# ---------------------------
# Optional: live tick printer
# ---------------------------

async def tick_printer(q: asyncio.Queue):
    """Print every PriceUpdate as it arrives. Toggle with PRINT_TICKS=1."""
    while True:
        u: PriceUpdate = await q.get()
        print(
            f"TICK {u.symbol:<6} {u.price:>16.6f}  "
            f"24h={u.change_24h:+.2f}%  vol={u.volume_24h:,.0f}",
            flush=True,
        )


# ---------------------------
# Main
# ---------------------------

async def main():
    cfg = config_from_env()

    kv = build_kv(cfg)
    store = RuleStore(kv)

    # ----- Notifications -----
    center = NotificationCenter(
        [ConsoleNotifier()],
        initial=cfg.notify_permission,
        prompt=ask_permission if os.isatty(0) else None,
    )

    # Optional Telegram (built from env). If not configured, we skip it.
    tg_notifier = None
    try:
        tg_notifier = TelegramNotifier(telegram_config_from_env())
        center.add_sink(tg_notifier)
        log.info("telegram_enabled")
    except RuntimeError:
        log.info("telegram_disabled_missing_env")

    pw = PriceWatch(store, center, TickerConfig(interval_s=cfg.tick_interval_s))

    printer = None
    if cfg.print_ticks:
        q_ticks: asyncio.Queue = asyncio.Queue(maxsize=2_000)
        pw.ticker.add_sink(q_ticks)
        printer = asyncio.create_task(tick_printer(q_ticks), name="tick-printer")

    if tg_notifier is not None:
        await tg_notifier.start()
    await pw.start()

    for sym, px in cfg.symbols.items():
        pw.subscribe(sym, sym, px)

    # seed alerts from env (skip ones already active for the same target)
    for seed in cfg.alerts:
        latest = pw.latest(seed.symbol)
        if latest is None:
            log.warning("seed_alert_unknown_symbol", symbol=seed.symbol)
            continue
        if any(r.condition == seed.condition and r.target_price == seed.target
               for r in pw.active_rules_for(seed.symbol)):
            continue
        try:
            await pw.add_rule(seed.symbol, seed.symbol, seed.target, seed.condition, latest.price)
        except AlertError as e:
            log.warning("seed_alert_rejected", symbol=seed.symbol, err=str(e))

    for rule in pw.all_active():
        log.info("active_rule", rule=format_rule_line(rule))

    try:
        await asyncio.Event().wait()   # run until cancelled
    finally:
        # graceful shutdown to avoid unclosed sessions
        await pw.stop()
        if printer is not None:
            printer.cancel()
        if tg_notifier is not None:
            await tg_notifier.stop()
        if isinstance(kv, RedisKV):
            await kv.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
