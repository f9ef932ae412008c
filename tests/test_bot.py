import pytest

from appointment_tracker.bot import load_fetcher, status_text
from appointment_tracker.keys import sort_appointments
from appointment_tracker.monitor import MonitorService

from .helpers import make_appointment


def test_load_fetcher_resolves_import_path():
    assert load_fetcher("appointment_tracker.keys:sort_appointments") is sort_appointments


@pytest.mark.parametrize("path", ["", "appointment_tracker.keys"])
def test_load_fetcher_requires_module_and_callable(path):
    with pytest.raises(ValueError):
        load_fetcher(path)


async def test_status_text_reports_tracking(tracker):
    async def fetch():
        return [make_appointment(), make_appointment(id="f", status="filled", time="13:00-16:00")]

    async def on_text(text):
        pass

    async def on_appointments(appointments):
        return True

    monitor = MonitorService(
        tracker=tracker, fetch=fetch, on_text=on_text, on_appointments=on_appointments
    )
    await monitor.run_cycle()

    text = status_text(monitor)
    assert "Проверок выполнено: 1" in text
    assert "Отправлено уведомлений: 1" in text
    assert "Отслеживается слотов: 2 (свободно 1, занято 1" in text


async def test_status_text_escapes_last_error(tracker):
    async def fetch():
        return []

    async def on_text(text):
        pass

    async def on_appointments(appointments):
        return True

    monitor = MonitorService(
        tracker=tracker, fetch=fetch, on_text=on_text, on_appointments=on_appointments
    )
    monitor.state.last_error = "<boom & co>"

    text = status_text(monitor)
    assert "<code>&lt;boom &amp; co&gt;</code>" in text
