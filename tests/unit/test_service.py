import pytest

from pricewatch.alerts.errors import PersistenceFailure, ValidationError
from pricewatch.alerts.store import RULES_KEY, RuleStore
from pricewatch.feed.ticker import TickerConfig
from pricewatch.notify.capability import NotificationCenter
from pricewatch.service import PriceWatch
from storage.kv import FileKV, MemoryKV
from tests.helpers.fakes import FakeNotifier, FakeStore, scripted_deltas


class _Sink:
    def __init__(self):
        self.got = []

    def deliver(self, title, body, tag):
        self.got.append(tag)


@pytest.mark.asyncio
async def test_facade_read_write_api():
    pw = PriceWatch(FakeStore(), FakeNotifier(), TickerConfig(interval_s=60.0, seed=3))
    await pw.start()
    try:
        pw.subscribe("sol", "SOL", 100.0)
        pw.subscribe("sol", "SOL", 1.0)
        assert pw.latest("sol").price == 100.0

        rid = await pw.add_rule("sol", "SOL", 150.0, "above", 100.0)
        assert [r.id for r in pw.active_rules_for("sol")] == [rid]
        assert [r.id for r in pw.all_active()] == [rid]

        with pytest.raises(ValidationError):
            await pw.add_rule("sol", "SOL", 0, "above", 100.0)
        assert len(pw.all_active()) == 1

        assert await pw.remove_rule(rid) is True
        assert pw.all_active() == []

        pw.unsubscribe("sol")
        assert pw.latest("sol") is not None
    finally:
        await pw.stop()
    await pw.stop()  # idempotent


@pytest.mark.asyncio
async def test_triggered_state_survives_restart(tmp_path):
    """
    Trigger a rule, restart on the same file store, keep feeding prices over
    the target: no second notification.
    """
    sink = _Sink()
    center = NotificationCenter([sink], initial="granted")

    pw1 = PriceWatch(RuleStore(FileKV(tmp_path)), center, TickerConfig(interval_s=60.0),
                     delta_fn=scripted_deltas([111.0]))
    await pw1.start()
    pw1.subscribe("sol", "SOL", 100.0)
    keep = await pw1.add_rule("sol", "SOL", 200.0, "above", 100.0)
    fired = await pw1.add_rule("sol", "SOL", 110.0, "above", 100.0)
    await pw1.ticker.tick()
    await pw1.stop()
    assert sink.got == [fired]

    # fresh process: new center (no dedup memory), same store
    sink2 = _Sink()
    center2 = NotificationCenter([sink2], initial="granted")
    pw2 = PriceWatch(RuleStore(FileKV(tmp_path)), center2, TickerConfig(interval_s=60.0),
                     delta_fn=scripted_deltas([115.0, 210.0]))
    await pw2.start()
    try:
        assert [r.id for r in pw2.all_active()] == [keep]
        assert pw2.engine.get(fired).triggered
        pw2.subscribe("sol", "SOL", 111.0)
        await pw2.ticker.tick()
        assert sink2.got == []
        await pw2.ticker.tick()
        assert sink2.got == [keep]
    finally:
        await pw2.stop()


@pytest.mark.asyncio
async def test_start_fails_on_unreadable_store_without_ticking():
    kv = MemoryKV({RULES_KEY: '{"version": 7, "rules": []}'})
    pw = PriceWatch(RuleStore(kv), FakeNotifier(), TickerConfig(interval_s=60.0))
    with pytest.raises(PersistenceFailure):
        await pw.start()
    assert not pw.ticker.running
    assert await kv.get(RULES_KEY) == '{"version": 7, "rules": []}'
