from __future__ import annotations

from pricewatch.alerts.rules import AlertRule
from pricewatch.utils.time import utc_dt

def _fmt_px(px: float) -> str:
    # token prices span many magnitudes; keep six decimals like the dashboard
    return f"${px:.6f}"

def format_alert_title(rule: AlertRule) -> str:
    return f"Price Alert: {rule.token_symbol}"

def format_alert_body(rule: AlertRule, current_price: float) -> str:
    return (
        f"{rule.token_symbol} is now {rule.condition} {_fmt_px(rule.target_price)}.\n"
        f"Current price: {_fmt_px(current_price)}"
    )

def format_rule_line(rule: AlertRule) -> str:
    """One-line summary for logs / listings."""
    state = "TRIGGERED" if rule.triggered else "ACTIVE"
    arrow = "↑" if rule.condition == "above" else "↓"
    created = utc_dt(rule.created_at).strftime("%Y-%m-%d %H:%M:%S UTC")
    return (
        f"[{rule.id}] {rule.token_symbol} {arrow} {_fmt_px(rule.target_price)} "
        f"(ref {_fmt_px(rule.reference_price)}, last {_fmt_px(rule.last_observed_price)}) "
        f"{state}, created {created}"
    )
