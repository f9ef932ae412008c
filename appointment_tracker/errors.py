"""
Error hierarchy for the tracking engine.

Иерархия ошибок: временные сбои записи и нарушения инвариантов уведомлений.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .models import Appointment


class TrackerError(Exception):
    """Base exception for all tracking engine errors."""

    pass


class PersistenceError(TrackerError):
    """Store document could not be written.

    Transient: the stores log it and keep the in-memory state, the next save retries.
    """

    pass


class NotificationInvariantError(TrackerError):
    """A filled/unknown appointment reached the eligible-for-notification output.

    This is a defect signal, not a runtime condition. The whole notification
    batch must be rejected.
    """

    def __init__(self, appointments: Sequence["Appointment"]) -> None:
        self.appointments = list(appointments)
        details = ", ".join(f"{apt.id}({apt.status.value})" for apt in self.appointments)
        super().__init__(f"Filled/unknown appointments in notification batch: {details}")


__all__ = ["TrackerError", "PersistenceError", "NotificationInvariantError"]
