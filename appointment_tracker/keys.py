"""
Content keys and selection helpers for appointments.

Контентный ключ слота (не зависит от эфемерного id) и фильтры/сортировка.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Appointment, AppointmentStatus

KEY_DELIMITER = "|"


def appointment_key(appointment: Appointment) -> str:
    """Return deterministic content key for a slot, independent of its ephemeral id."""
    location = appointment.location or appointment.city
    return KEY_DELIMITER.join(
        (appointment.date.isoformat(), appointment.time, location, appointment.exam_category)
    )


def filter_appointments(
    appointments: Iterable[Appointment],
    cities: Optional[Sequence[str]] = None,
    exam_categories: Optional[Sequence[str]] = None,
    months: Optional[Sequence[int]] = None,
    statuses: Optional[Sequence[AppointmentStatus]] = None,
) -> List[Appointment]:
    """
    Select appointments matching all given criteria.

    Пустой критерий не фильтрует. Города и категории сравниваются по подстроке без учёта регистра.
    """
    wanted_cities = [c.lower() for c in cities or []]
    wanted_categories = [c.lower() for c in exam_categories or []]
    result: List[Appointment] = []
    for apt in appointments:
        if wanted_cities and not any(c in apt.city.lower() for c in wanted_cities):
            continue
        if wanted_categories and not any(
            c in apt.exam_category.lower() for c in wanted_categories
        ):
            continue
        if months and apt.date.month not in months:
            continue
        if statuses and apt.status not in statuses:
            continue
        result.append(apt)
    return result


def _start_time(appointment: Appointment) -> str:
    return appointment.time.split("-")[0].strip()


def sort_appointments(appointments: Iterable[Appointment]) -> List[Appointment]:
    return sorted(appointments, key=lambda apt: (apt.date, _start_time(apt)))


def group_by_date(appointments: Iterable[Appointment]) -> Dict[date, List[Appointment]]:
    groups: Dict[date, List[Appointment]] = {}
    for apt in sort_appointments(appointments):
        groups.setdefault(apt.date, []).append(apt)
    return groups


__all__ = [
    "KEY_DELIMITER",
    "appointment_key",
    "filter_appointments",
    "sort_appointments",
    "group_by_date",
]
