import asyncio

import pytest

from pricewatch.notify.capability import NotificationCenter
from pricewatch.notify.console import ConsoleNotifier
from pricewatch.notify.dedup import TagDeduper
from pricewatch.notify.queue import Notification, NotifyQueue
from pricewatch.notify.telegram import TelegramConfig, TelegramNotifier, config_from_env


class _RecordingSink:
    def __init__(self):
        self.got = []

    def deliver(self, title, body, tag):
        self.got.append((title, body, tag))


class _BrokenSink:
    def deliver(self, title, body, tag):
        raise RuntimeError("sink down")


# ---------- permission gate ----------

def test_send_is_noop_unless_granted():
    sink = _RecordingSink()
    for state in ("default", "denied"):
        NotificationCenter([sink], initial=state).send("t", "b", "tag")
    assert sink.got == []


def test_invalid_initial_permission():
    with pytest.raises(ValueError):
        NotificationCenter(initial="maybe")


@pytest.mark.asyncio
async def test_prompt_asked_once_and_remembered():
    asked = []

    async def prompt():
        asked.append(1)
        return True

    center = NotificationCenter(prompt=prompt)
    assert center.permission_state() == "default"
    assert await center.request_permission() == "granted"
    assert await center.request_permission() == "granted"
    assert len(asked) == 1


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_prompt():
    asked = []
    gate = asyncio.Event()

    async def prompt():
        asked.append(1)
        await gate.wait()
        return False

    center = NotificationCenter(prompt=prompt)
    t1 = asyncio.create_task(center.request_permission())
    t2 = asyncio.create_task(center.request_permission())
    await asyncio.sleep(0.01)
    gate.set()
    assert await t1 == "denied"
    assert await t2 == "denied"
    assert len(asked) == 1


@pytest.mark.asyncio
async def test_no_prompt_resolves_to_denied():
    center = NotificationCenter()
    assert await center.request_permission() == "denied"


@pytest.mark.asyncio
async def test_failing_prompt_resolves_to_denied():
    async def prompt():
        raise EOFError("no tty")

    center = NotificationCenter(prompt=prompt)
    assert await center.request_permission() == "denied"


@pytest.mark.asyncio
async def test_preset_state_is_not_reprompted():
    async def prompt():
        raise AssertionError("should not be asked")

    center = NotificationCenter(initial="denied", prompt=prompt)
    assert await center.request_permission() == "denied"


# ---------- delivery ----------

def test_duplicate_tag_delivered_once():
    sink = _RecordingSink()
    center = NotificationCenter([sink], initial="granted")
    center.send("Price Alert: SOL", "body", "rule-1")
    center.send("Price Alert: SOL", "body", "rule-1")
    center.send("Price Alert: SOL", "body", "rule-2")

    assert [tag for _, _, tag in sink.got] == ["rule-1", "rule-2"]
    assert center.sent == 2 and center.suppressed == 1


def test_broken_sink_does_not_block_others():
    good = _RecordingSink()
    center = NotificationCenter([_BrokenSink(), good], initial="granted")
    center.send("t", "b", "x")
    assert good.got == [("t", "b", "x")]


def test_tag_deduper_expiry(monkeypatch):
    d = TagDeduper(ttl_s=10.0)
    now = {"t": 100.0}
    monkeypatch.setattr(d, "_now", lambda: now["t"])

    assert d.check_and_mark("a") is True
    assert d.check_and_mark("a") is False
    now["t"] = 111.0
    assert d.seen_recently("a") is False
    assert d.check_and_mark("a") is True


def test_console_notifier_prints(capsys):
    ConsoleNotifier().deliver("Price Alert: SOL", "SOL is now above $110.000000.\nCurrent price: $111.000000", "r1")
    out = capsys.readouterr().out
    assert "[ALERT] Price Alert: SOL: SOL is now above $110.000000. | Current price" in out
    assert "tag=r1" in out


def test_console_notifier_falls_back_when_format_fails(capsys):
    def bad(title, body, tag):
        raise KeyError("x")

    ConsoleNotifier(format_fn=bad).deliver("T", "B", "r1")
    assert "[ALERT] T: B" in capsys.readouterr().out


# ---------- queue / telegram ----------

@pytest.mark.asyncio
async def test_notify_queue_drops_when_full():
    q = NotifyQueue(maxsize=1)
    assert q.try_put(Notification("a", "b", "1"))
    assert not q.try_put(Notification("a", "b", "2"))
    assert q.stats.enq_ok == 1 and q.stats.enq_drop == 1
    assert (await q.get()).tag == "1"
    assert q.drain_nowait() == []


def test_telegram_config_from_env(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
    with pytest.raises(RuntimeError):
        config_from_env()

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "-100")
    cfg = config_from_env()
    assert cfg.bot_token == "123:abc" and cfg.chat_id == "-100"
    assert cfg.parse_mode is None


@pytest.mark.asyncio
async def test_telegram_worker_drains_queue(monkeypatch):
    tg = TelegramNotifier(TelegramConfig(bot_token="t", chat_id="c", per_chat_rate_per_sec=1000.0, per_chat_burst=10))
    sent = []

    async def fake_send(text):
        sent.append(text)
        return True

    monkeypatch.setattr(tg, "_send", fake_send)
    await tg.start()
    tg.deliver("Price Alert: SOL", "SOL is now above $110.000000.", "r1")
    tg.deliver("Price Alert: BTC", "BTC is now below $60000.000000.", "r2")

    for _ in range(100):
        if len(sent) == 2:
            break
        await asyncio.sleep(0.01)
    await tg.stop()

    assert sent == [
        "Price Alert: SOL\nSOL is now above $110.000000.",
        "Price Alert: BTC\nBTC is now below $60000.000000.",
    ]


@pytest.mark.asyncio
async def test_telegram_stop_discards_pending():
    tg = TelegramNotifier(TelegramConfig(bot_token="t", chat_id="c", queue_maxsize=5))
    tg.deliver("a", "b", "1")
    tg.deliver("a", "b", "2")
    await tg.stop()  # never started
    assert tg.q.qsize() == 0


class _Resp:
    def __init__(self, status, body=None):
        self.status = status
        self._body = body or {}

    async def text(self):
        return str(self._body)

    async def json(self, content_type=None):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _Session:
    """Replays scripted responses for aiohttp.ClientSession.post."""
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.posts = 0

    def post(self, url, data=None):
        self.posts += 1
        return _Resp(self.statuses.pop(0))


def _tg_with(statuses, retries=3):
    tg = TelegramNotifier(TelegramConfig(
        bot_token="t", chat_id="c",
        max_retries=retries, initial_backoff_s=0.001, max_backoff_s=0.002,
    ))
    tg._session = _Session(statuses)
    return tg


@pytest.mark.asyncio
async def test_telegram_send_retries_server_errors_then_succeeds():
    tg = _tg_with([502, 503, 200])
    assert await tg._send("hi") is True
    assert tg._session.posts == 3


@pytest.mark.asyncio
async def test_telegram_send_gives_up_after_schedule_is_spent():
    tg = _tg_with([500, 500, 500, 200], retries=3)
    assert await tg._send("hi") is False
    assert tg._session.posts == 3


@pytest.mark.asyncio
async def test_telegram_send_does_not_retry_client_errors():
    tg = _tg_with([400, 200])
    assert await tg._send("hi") is False
    assert tg._session.posts == 1
