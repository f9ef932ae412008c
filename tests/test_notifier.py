from __future__ import annotations

from typing import Any, Dict, List

from appointment_tracker.config import NotifierConfig
from appointment_tracker.notifier import TelegramNotifier

from .helpers import make_appointment


class FakeBot:
    def __init__(self, fail_times: int = 0, error: Exception | None = None) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail_times = fail_times
        self.error = error or RuntimeError("boom")

    async def send_message(self, **kwargs: Any) -> None:
        if self.fail_times:
            self.fail_times -= 1
            raise self.error
        self.sent.append(kwargs)


def _notifier(bot: FakeBot, **config: Any) -> TelegramNotifier:
    return TelegramNotifier(bot, chat_id=42, config=NotifierConfig(**config), retry_delay=0)


async def test_send_available_appointments():
    bot = FakeBot()
    apt = make_appointment(registration_url="https://example.org/book?a=1&b=2", price=250.0)

    assert await _notifier(bot).send([apt]) is True

    [message] = bot.sent
    assert message["chat_id"] == 42
    assert "15.02.2025" in message["text"]
    assert "09:00-12:00 — Tehran, A (IELTS)" in message["text"]
    assert "a=1&amp;b=2" in message["text"]
    assert "250" in message["text"]


async def test_non_available_appointments_are_filtered():
    bot = FakeBot()
    ok = make_appointment(id="ok", time="13:00-16:00")
    filled = make_appointment(id="bad", status="filled")

    assert await _notifier(bot).send([ok, filled]) is True
    assert "13:00-16:00" in bot.sent[0]["text"]
    assert "09:00-12:00" not in bot.sent[0]["text"]


async def test_batch_without_available_is_rejected():
    bot = FakeBot()
    assert await _notifier(bot).send([make_appointment(status="unknown")]) is False
    assert bot.sent == []


async def test_delivery_failure_returns_false():
    bot = FakeBot(fail_times=5)
    assert await _notifier(bot, retries=2).send([make_appointment()]) is False
    assert bot.sent == []


async def test_send_text_swallows_transport_errors():
    bot = FakeBot(fail_times=1)
    await _notifier(bot).send_text("hello")
    assert bot.sent == []


def test_message_is_capped():
    notifier = _notifier(FakeBot(), max_appointments_per_message=2)
    apts = [make_appointment(id=str(i), time=f"{8 + i:02d}:00-09:00") for i in range(5)]
    text = notifier.format_message(apts)
    assert "Свободных слотов: 5" in text
    assert text.count("🕐") == 2
    assert "… и ещё 3" in text


def test_single_appointment_title_and_escaping():
    notifier = _notifier(FakeBot())
    text = notifier.format_message([make_appointment(location="<Hall & Co>")])
    assert "Появился свободный слот" in text
    assert "&lt;Hall &amp; Co&gt;" in text
