from __future__ import annotations

import pytest

from appointment_tracker.engine import AppointmentTracker

from .helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(tmp_path, clock) -> AppointmentTracker:
    t = AppointmentTracker(
        tracking_file=tmp_path / "appointment-tracking.json",
        ledger_file=tmp_path / "notified-appointments.json",
        max_tracking_days=30,
        clock=clock,
    )
    t.initialize()
    return t
