from __future__ import annotations

from datetime import datetime, timedelta, timezone

from appointment_tracker.models import Appointment


class FakeClock:
    """Advances by one second on every read so history timestamps are strictly ordered."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 2, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_appointment(
    id: str = "x1",
    status: str = "available",
    date: str = "2025-02-15",
    time: str = "09:00-12:00",
    location: str | None = "A",
    exam_category: str = "IELTS",
    city: str = "Tehran",
    **extra: object,
) -> Appointment:
    return Appointment(
        id=id,
        date=date,
        time=time,
        location=location,
        exam_category=exam_category,
        city=city,
        status=status,
        **extra,
    )
