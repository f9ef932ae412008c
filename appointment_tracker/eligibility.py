"""
Notification eligibility filter.

Консервативное правило: уведомляем только о доступных слотах, один раз на
состояние, и повторно только после цикла available -> занято -> available.
Каждое решение возвращается с причиной.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .errors import NotificationInvariantError
from .keys import appointment_key
from .models import (
    UNNOTIFIABLE_STATUSES,
    Appointment,
    Decision,
    StatusChange,
    TrackedAppointment,
    utcnow,
)
from .store import NotificationLedger, TrackingStore

logger = logging.getLogger(__name__)


REASON_NOT_AVAILABLE = "not available"
REASON_NEW = "new available appointment"
REASON_NEVER_NOTIFIED = "no previous notification for this key"
REASON_RECOVERED = "became available again after being unavailable"
REASON_ALREADY_NOTIFIED = "already notified, no qualifying status transition since"


def recovered_since(history: Sequence[StatusChange], since: datetime) -> bool:
    """True if history after `since` has available -> non-available, later followed by -> available."""
    went_unavailable = False
    for change in history:
        if change.timestamp <= since:
            continue
        if change.went_unavailable:
            went_unavailable = True
        elif went_unavailable and change.became_available:
            return True
    return False


class EligibilityFilter:
    def __init__(
        self,
        store: TrackingStore,
        ledger: NotificationLedger,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self._clock = clock

    def decide(self, appointment: Appointment) -> Decision:
        key = appointment_key(appointment)
        tracked = self.store.get(appointment.id)
        last_notified = self.ledger.get(key)

        def decision(should_notify: bool, reason: str) -> Decision:
            return Decision(
                appointment=appointment,
                key=key,
                should_notify=should_notify,
                reason=reason,
                status_history=list(tracked.status_history) if tracked else None,
                last_notified_at=last_notified,
                notification_count=tracked.notifications_sent if tracked else 0,
            )

        if not appointment.is_available:
            return decision(False, REASON_NOT_AVAILABLE)
        if tracked is None and last_notified is None:
            return decision(True, REASON_NEW)
        if last_notified is None:
            return decision(True, REASON_NEVER_NOTIFIED)
        if tracked is not None and recovered_since(tracked.status_history, last_notified):
            return decision(True, REASON_RECOVERED)
        return decision(False, REASON_ALREADY_NOTIFIED)

    def decisions_for(self, candidates: Sequence[Appointment]) -> List[Decision]:
        decisions = [self.decide(apt) for apt in candidates]
        for d in decisions:
            logger.debug(
                "%s %s - %s",
                "notify" if d.should_notify else "skip",
                d.key,
                d.reason,
            )
        return decisions

    def eligible(self, candidates: Sequence[Appointment]) -> List[Appointment]:
        """
        Subset of candidates to notify this cycle, in input order.

        Raises NotificationInvariantError if a filled/unknown appointment slipped through.
        """
        selected = [d.appointment for d in self.decisions_for(candidates) if d.should_notify]
        offending = [apt for apt in selected if apt.status in UNNOTIFIABLE_STATUSES]
        if offending:
            logger.error(
                "Rejecting notification batch of %s: %s filled/unknown appointment(s)",
                len(selected),
                len(offending),
            )
            raise NotificationInvariantError(offending)
        return selected

    def mark_notified(self, appointments: Sequence[Appointment]) -> None:
        """Record delivery attempts: ledger entry per content key, counter per tracked record."""
        now = self._clock()
        touched_store = False
        for apt in appointments:
            key = appointment_key(apt)
            previously: Optional[datetime] = self.ledger.get(key)
            self.ledger.record(key, now)

            tracked: Optional[TrackedAppointment] = self.store.get(apt.id)
            if tracked is None:
                logger.info("Marked as notified (no tracking data): %s", key)
                continue
            tracked.notifications_sent += 1
            touched_store = True
            if previously is not None:
                logger.info(
                    "Re-notification sent for %s (total notifications: %s)",
                    key,
                    tracked.notifications_sent,
                )
            else:
                logger.info("First notification sent for %s", key)

        self.ledger.save()
        if touched_store:
            self.store.save()


__all__ = [
    "EligibilityFilter",
    "recovered_since",
    "REASON_NOT_AVAILABLE",
    "REASON_NEW",
    "REASON_NEVER_NOTIFIED",
    "REASON_RECOVERED",
    "REASON_ALREADY_NOTIFIED",
]
