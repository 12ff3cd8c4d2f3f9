import math

import pytest
from dataclasses import FrozenInstanceError

from pricewatch.alerts.errors import ValidationError
from pricewatch.alerts.rules import AlertRule


def test_create_fills_defaults():
    r = AlertRule.create("sol", "SOL", 110, "above", 100.0)
    assert r.id and isinstance(r.id, str)
    assert r.target_price == 110.0 and isinstance(r.target_price, float)
    assert r.reference_price == 100.0
    assert r.last_observed_price == 100.0
    assert r.triggered is False and r.active
    assert r.created_at > 0


def test_ids_are_unique():
    ids = {AlertRule.create("sol", "SOL", 1.0, "below", 2.0).id for _ in range(200)}
    assert len(ids) == 200


@pytest.mark.parametrize("bad", [0, 0.0, -1.0, math.nan, math.inf, -math.inf, "110", None, True])
def test_invalid_targets_rejected(bad):
    with pytest.raises(ValidationError):
        AlertRule.create("sol", "SOL", bad, "above", 100.0)


def test_unknown_condition_rejected():
    with pytest.raises(ValidationError):
        AlertRule.create("sol", "SOL", 110.0, "sideways", 100.0)


def test_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        AlertRule.create("sol", "SOL", -5, "above", 100.0)


def test_crossed_above_is_inclusive():
    r = AlertRule.create("sol", "SOL", 110.0, "above", 100.0)
    assert not r.crossed(109.999)
    assert r.crossed(110.0)
    assert r.crossed(111.0)


def test_crossed_below_is_inclusive():
    r = AlertRule.create("sol", "SOL", 90.0, "below", 100.0)
    assert not r.crossed(90.001)
    assert r.crossed(90.0)
    assert r.crossed(10.0)


def test_mark_triggered_is_one_way():
    r = AlertRule.create("sol", "SOL", 110.0, "above", 100.0)
    t = r.mark_triggered(111.5)

    assert r.triggered is False  # original untouched
    assert t.triggered is True
    assert t.last_observed_price == 111.5
    assert (t.id, t.target_price, t.condition, t.reference_price) == (
        r.id, r.target_price, r.condition, r.reference_price)
    with pytest.raises(ValueError):
        t.mark_triggered(120.0)


def test_rule_is_frozen():
    r = AlertRule.create("sol", "SOL", 110.0, "above", 100.0)
    with pytest.raises(FrozenInstanceError):
        r.target_price = 5.0


def test_notification_text():
    from pricewatch.alerts.formatting import format_alert_body, format_alert_title, format_rule_line

    r = AlertRule.create("pepe", "PEPE", 0.0000127, "below", 0.0000131)
    assert format_alert_title(r) == "Price Alert: PEPE"
    assert format_alert_body(r, 0.0000121) == (
        "PEPE is now below $0.000013.\nCurrent price: $0.000012"
    )
    line = format_rule_line(r.mark_triggered(0.0000121))
    assert line.startswith(f"[{r.id}] PEPE ↓ $0.000013")
    assert "TRIGGERED" in line and "UTC" in line
