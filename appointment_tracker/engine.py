"""
Appointment tracking engine: one store, one ledger, detector and filter over them.

Фасад движка: загрузка состояния, обработка цикла, решения об уведомлениях.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .cleanup import sweep
from .config import DetectionConfig
from .detector import ChangeDetector
from .eligibility import EligibilityFilter
from .keys import appointment_key
from .models import (
    Appointment,
    AppointmentStatus,
    CleanupResult,
    Decision,
    DetectionResult,
    StatusChange,
    TrackedAppointment,
    TrackingStatistics,
    utcnow,
)
from .store import NotificationLedger, TrackingStore

logger = logging.getLogger(__name__)


class AppointmentTracker:
    """
    Change tracking and notification eligibility for polled appointments.

    Callers must serialize: process_appointments -> eligible -> mark_notified,
    and cleanup only between cycles.
    """

    def __init__(
        self,
        tracking_file: Path,
        ledger_file: Path,
        max_tracking_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.max_tracking_days = max_tracking_days
        self._clock = clock
        self.store = TrackingStore(tracking_file)
        self.ledger = NotificationLedger(ledger_file, clock=clock)
        self.detector = ChangeDetector(self.store, clock=clock, ledger=self.ledger)
        self.filter = EligibilityFilter(self.store, self.ledger, clock=clock)

    @classmethod
    def from_config(
        cls,
        config: DetectionConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> "AppointmentTracker":
        return cls(
            tracking_file=config.tracking_data_file,
            ledger_file=config.notification_tracking_file,
            max_tracking_days=config.max_tracking_days,
            clock=clock,
        )

    def initialize(self) -> CleanupResult:
        """Load both documents and drop anything past the retention horizon."""
        self.store.load()
        self.ledger.load()
        return self.cleanup()

    @staticmethod
    def appointment_key(appointment: Appointment) -> str:
        return appointment_key(appointment)

    def process_appointments(self, appointments: Sequence[Appointment]) -> DetectionResult:
        return self.detector.process(appointments)

    def decisions_for(self, candidates: Sequence[Appointment]) -> List[Decision]:
        return self.filter.decisions_for(candidates)

    def eligible(self, candidates: Sequence[Appointment]) -> List[Appointment]:
        return self.filter.eligible(candidates)

    def mark_notified(self, appointments: Sequence[Appointment]) -> None:
        self.filter.mark_notified(appointments)

    def cleanup(self) -> CleanupResult:
        return sweep(self.store, self.ledger, self.max_tracking_days, self._clock())

    # region queries
    def get_appointment_history(self, identity: str) -> Optional[TrackedAppointment]:
        return self.store.get(identity)

    def get_recent_status_changes(self, minutes_back: int = 60) -> List[StatusChange]:
        cutoff = self._clock() - timedelta(minutes=minutes_back)
        changes = [
            change
            for record in self.store.values()
            for change in record.status_history
            if change.timestamp >= cutoff
        ]
        return sorted(changes, key=lambda c: c.timestamp, reverse=True)

    def statistics(self) -> TrackingStatistics:
        records = self.store.values()
        now = self._clock()
        counts = {status: 0 for status in AppointmentStatus}
        total_seconds = 0.0
        for record in records:
            counts[record.appointment.status] += 1
            total_seconds += (now - record.first_seen).total_seconds()

        return TrackingStatistics(
            total_tracked=len(records),
            available_count=counts[AppointmentStatus.AVAILABLE],
            filled_count=counts[AppointmentStatus.FILLED],
            pending_count=counts[AppointmentStatus.PENDING],
            not_registerable_count=counts[AppointmentStatus.NOT_REGISTERABLE],
            unknown_count=counts[AppointmentStatus.UNKNOWN],
            total_notifications_sent=sum(r.notifications_sent for r in records),
            average_tracking_seconds=total_seconds / len(records) if records else 0.0,
            notified_keys_count=len(self.ledger),
        )

    # endregion


__all__ = ["AppointmentTracker"]
