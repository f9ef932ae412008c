"""
Change detector: diffs one polling cycle against the tracking store.

Детектор изменений: новые слоты, смены статуса, исчезнувшие слоты.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Set

from .keys import appointment_key
from .models import (
    Appointment,
    AppointmentStatus,
    DetectionResult,
    StatusChange,
    TrackedAppointment,
    utcnow,
)
from .store import NotificationLedger, TrackingStore

logger = logging.getLogger(__name__)


FIRST_DETECTION = "First detection"
STATUS_CHANGE_DETECTED = "Status change detected"


def _describe(apt: Appointment) -> str:
    return f"{apt.date.isoformat()} {apt.time} - {apt.city or apt.location}"


class ChangeDetector:
    """Updates the tracking store from a cycle's fetch result and reports what changed."""

    def __init__(
        self,
        store: TrackingStore,
        clock: Callable[[], datetime] = utcnow,
        ledger: Optional[NotificationLedger] = None,
    ) -> None:
        self.store = store
        self._clock = clock
        self._ledger = ledger

    def process(self, appointments: Sequence[Appointment]) -> DetectionResult:
        now = self._clock()
        result = DetectionResult()
        seen: Set[str] = set()

        for apt in appointments:
            seen.add(apt.id)
            tracked = self.store.get(apt.id)
            if tracked is None:
                self._track_new(apt, now, result)
            else:
                self._update_existing(tracked, apt, now, result)

        for identity in self.store:
            if identity in seen:
                continue
            removed = self.store.remove(identity)
            if removed is not None:
                result.removed.append(removed)
                logger.info("Appointment removed: %s", _describe(removed.appointment))

        self.store.save()
        result.all_tracked = self.store.values()
        return result

    def _track_new(self, apt: Appointment, now: datetime, result: DetectionResult) -> None:
        self.store.put(
            TrackedAppointment(
                appointment=apt,
                first_seen=now,
                last_seen=now,
                status_history=[
                    StatusChange(
                        timestamp=now,
                        previous_status=AppointmentStatus.UNKNOWN,
                        new_status=apt.status,
                        reason=FIRST_DETECTION,
                    )
                ],
            )
        )
        if apt.is_available:
            result.newly_available.append(apt)
            logger.info("New available appointment detected: %s", _describe(apt))
        else:
            logger.info("New appointment detected (%s): %s", apt.status.value, _describe(apt))

    def _update_existing(
        self,
        tracked: TrackedAppointment,
        apt: Appointment,
        now: datetime,
        result: DetectionResult,
    ) -> None:
        previous = tracked.appointment.status
        current = apt.status
        # История не должна идти назад во времени, даже если часы сдвинулись
        if tracked.status_history and now < tracked.status_history[-1].timestamp:
            now = tracked.status_history[-1].timestamp

        tracked.last_seen = now
        tracked.appointment = apt
        if previous is current:
            return

        key = appointment_key(apt)
        if self._ledger is not None:
            # Смена статуса всегда позже последнего уведомления по этому слоту
            notified_at = self._ledger.get(key)
            if notified_at is not None and now <= notified_at:
                now = notified_at + timedelta(microseconds=1)

        change = StatusChange(
            timestamp=now,
            previous_status=previous,
            new_status=current,
            reason=STATUS_CHANGE_DETECTED,
        )
        tracked.status_history.append(change)

        if change.became_available:
            result.newly_available.append(apt)
            logger.info("Appointment became available again: %s", key)
        elif change.went_unavailable:
            logger.info("Appointment became unavailable: %s (%s)", key, current.value)
        else:
            logger.info("Status transition for %s: %s -> %s", key, previous.value, current.value)
        result.status_changed.append(apt)


__all__ = ["ChangeDetector", "FIRST_DETECTION", "STATUS_CHANGE_DETECTED"]
