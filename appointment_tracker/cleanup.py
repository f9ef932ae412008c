"""
Retention sweep for tracking records and ledger entries.

Чистка старых записей трекинга и журнала уведомлений.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .models import CleanupResult
from .store import NotificationLedger, TrackingStore

logger = logging.getLogger(__name__)


def sweep(
    store: TrackingStore,
    ledger: NotificationLedger,
    max_tracking_days: int,
    now: datetime,
) -> CleanupResult:
    """Evict records older than `max_tracking_days`; persist only what changed."""
    cutoff = now - timedelta(days=max_tracking_days)

    tracking_removed = 0
    for identity, record in store.items():
        if record.last_seen < cutoff:
            store.remove(identity)
            tracking_removed += 1

    ledger_removed = 0
    for key, notified_at in ledger.items():
        if notified_at < cutoff:
            ledger.remove(key)
            ledger_removed += 1

    if tracking_removed:
        logger.info("Cleaned up %s old appointment tracking records", tracking_removed)
        store.save()
    if ledger_removed:
        logger.info("Cleaned up %s old notification keys", ledger_removed)
        ledger.save()

    return CleanupResult(tracking_removed=tracking_removed, ledger_removed=ledger_removed)


__all__ = ["sweep"]
