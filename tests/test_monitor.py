from __future__ import annotations

from typing import List

import pytest

from appointment_tracker.config import MonitorConfig
from appointment_tracker.errors import NotificationInvariantError
from appointment_tracker.models import Appointment
from appointment_tracker.monitor import MonitorService

from .helpers import make_appointment


class Harness:
    def __init__(self, tracker, delivered: bool = True, **config) -> None:
        self.batches: List[List[Appointment]] = []
        self.texts: List[str] = []
        self.next_fetch: List[Appointment] = []
        self.delivered = delivered
        self.monitor = MonitorService(
            tracker=tracker,
            fetch=self.fetch,
            on_text=self.on_text,
            on_appointments=self.on_appointments,
            config=MonitorConfig(**config),
        )

    async def fetch(self) -> List[Appointment]:
        return list(self.next_fetch)

    async def on_text(self, text: str) -> None:
        self.texts.append(text)

    async def on_appointments(self, appointments: List[Appointment]) -> bool:
        self.batches.append(list(appointments))
        return self.delivered


async def test_cycle_notifies_once_and_marks(tracker):
    h = Harness(tracker)
    apt = make_appointment()
    h.next_fetch = [apt]

    assert await h.monitor.run_cycle() == [apt]
    assert await h.monitor.run_cycle() == []

    assert h.batches == [[apt]]
    assert h.monitor.state.checks_count == 2
    assert h.monitor.state.notifications_total == 1
    assert tracker.get_appointment_history("x1").notifications_sent == 1


async def test_cycle_renotifies_after_recovery(tracker):
    h = Harness(tracker)
    h.next_fetch = [make_appointment(status="filled")]
    await h.monitor.run_cycle()
    h.next_fetch = [make_appointment(status="available")]
    await h.monitor.run_cycle()
    h.next_fetch = [make_appointment(status="filled")]
    await h.monitor.run_cycle()
    h.next_fetch = [make_appointment(status="available")]
    await h.monitor.run_cycle()

    assert len(h.batches) == 2


async def test_failed_delivery_is_retried_next_cycle(tracker):
    h = Harness(tracker, delivered=False)
    apt = make_appointment()
    h.next_fetch = [apt]

    assert await h.monitor.run_cycle() == []
    assert tracker.ledger.get(tracker.appointment_key(apt)) is None

    h.delivered = True
    assert await h.monitor.run_cycle() == [apt]
    assert len(h.batches) == 2


async def test_cycle_applies_selection_criteria(tracker):
    h = Harness(tracker, cities=["shiraz"])
    h.next_fetch = [
        make_appointment(id="t", city="Tehran"),
        make_appointment(id="s", city="Shiraz", location="B"),
    ]
    notified = await h.monitor.run_cycle()
    assert [a.id for a in notified] == ["s"]
    assert tracker.get_appointment_history("t") is None


async def test_invariant_violation_aborts_notification_step(tracker, monkeypatch):
    h = Harness(tracker)
    apt = make_appointment()
    h.next_fetch = [apt]

    def broken(candidates):
        raise NotificationInvariantError([make_appointment(status="filled")])

    monkeypatch.setattr(tracker, "eligible", broken)
    assert await h.monitor.run_cycle() == []

    assert h.batches == []
    assert h.texts and "x1(filled)" in h.texts[0]
    assert h.monitor.state.last_error
    # трекинг сохранён, следующий цикл работает как обычно
    assert tracker.get_appointment_history("x1") is not None
    assert tracker.ledger.get(tracker.appointment_key(apt)) is None


async def test_fetch_errors_propagate_from_run_cycle(tracker):
    h = Harness(tracker)

    async def failing_fetch():
        raise RuntimeError("site down")

    h.monitor.fetch = failing_fetch
    with pytest.raises(RuntimeError):
        await h.monitor.run_cycle()


async def test_run_cleanup_records_time(tracker):
    h = Harness(tracker)
    await h.monitor.run_cleanup()
    assert h.monitor.state.last_cleanup_at is not None
    assert not h.monitor._cleanup_due(h.monitor.state.last_cleanup_at)


async def test_start_and_stop(tracker):
    h = Harness(tracker, check_interval=30, check_interval_variation=0)
    h.next_fetch = [make_appointment()]

    await h.monitor.start()
    assert h.monitor._task is not None
    await h.monitor.stop()

    assert not h.monitor.is_running
    assert h.texts[0] == "Мониторинг запущен ✅"
    assert h.texts[-1] == "Мониторинг остановлен ⏹️"


async def test_unchanged_slot_is_not_renotified_after_ledger_eviction(tracker, clock):
    h = Harness(tracker)
    h.next_fetch = [make_appointment()]

    for _ in range(61):
        await h.monitor.run_cleanup()
        await h.monitor.run_cycle()
        clock.advance(days=1)

    assert len(h.batches) == 1
    assert tracker.ledger.get(tracker.appointment_key(h.next_fetch[0])) is None


async def test_undelivered_slot_is_dropped_once_it_disappears(tracker):
    h = Harness(tracker, delivered=False)
    apt = make_appointment()
    h.next_fetch = [apt]
    await h.monitor.run_cycle()

    assert h.monitor._undelivered == {tracker.appointment_key(apt)}

    h.next_fetch = []
    await h.monitor.run_cycle()

    assert h.monitor._undelivered == set()
    assert len(h.batches) == 1


async def test_successful_cycle_clears_previous_error(tracker):
    h = Harness(tracker)
    h.next_fetch = [make_appointment()]
    h.monitor.state.last_error = "site down"

    await h.monitor.run_cycle()

    assert h.monitor.state.last_error is None


async def test_invariant_message_is_html_escaped(tracker, monkeypatch):
    h = Harness(tracker)
    h.next_fetch = [make_appointment()]

    def broken(candidates):
        raise NotificationInvariantError([make_appointment(id="<x&1>", status="filled")])

    monkeypatch.setattr(tracker, "eligible", broken)
    await h.monitor.run_cycle()

    assert "&lt;x&amp;1&gt;(filled)" in h.texts[0]
    assert "<x&1>" not in h.texts[0]
    assert h.monitor.state.last_error and "<x&1>" in h.monitor.state.last_error
