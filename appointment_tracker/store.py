"""
Durable stores: tracked appointments and the notification-key ledger.

Два независимых JSON-документа:
- трекинг по эфемерному id (обновляется каждый цикл)
- журнал уведомлений по контентному ключу (переживает исчезновение слота)
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from .errors import PersistenceError
from .models import TrackedAppointment, as_utc, utcnow
from .utils import atomic_write_json, read_json

logger = logging.getLogger(__name__)


LEDGER_VERSION = "1.0"

_TIMESTAMP = TypeAdapter(datetime)


def _read_document(path: Path, what: str) -> Optional[dict]:
    """Read a JSON object from disk; any failure means 'start empty'."""
    try:
        raw = read_json(path)
    except (OSError, ValueError) as e:
        logger.warning("Failed to read %s from %s, starting fresh: %s", what, path, e)
        return None
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Discarding %s in %s: expected an object, got %s", what, path, type(raw).__name__)
        return None
    return raw


class TrackingStore:
    """Map of ephemeral identity -> TrackedAppointment, backed by a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._records: Dict[str, TrackedAppointment] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity: object) -> bool:
        return identity in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))

    def get(self, identity: str) -> Optional[TrackedAppointment]:
        return self._records.get(identity)

    def put(self, record: TrackedAppointment) -> None:
        self._records[record.identity] = record

    def remove(self, identity: str) -> Optional[TrackedAppointment]:
        return self._records.pop(identity, None)

    def values(self) -> List[TrackedAppointment]:
        return list(self._records.values())

    def items(self) -> List[Tuple[str, TrackedAppointment]]:
        return list(self._records.items())

    def load(self) -> int:
        """Replace in-memory records with the file contents. Returns loaded count."""
        self._records = {}
        raw = _read_document(self.path, "tracking data")
        if raw is None:
            logger.info("Starting with fresh appointment tracking data")
            return 0

        entries: Any = raw.get("trackedAppointments")
        if entries is None:
            # Старый формат: записи лежали прямо в корне документа
            entries = {
                identity: entry
                for identity, entry in raw.items()
                if isinstance(entry, dict) and "appointment" in entry
            }
        if not isinstance(entries, dict):
            logger.warning("Discarding tracking data in %s: malformed trackedAppointments", self.path)
            return 0

        for identity, entry in entries.items():
            try:
                record = TrackedAppointment.model_validate(entry)
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed tracking record %s (%s errors)", identity, e.error_count()
                )
                continue
            self._records[identity] = record

        logger.info("Loaded tracking data for %s appointments", len(self._records))
        return len(self._records)

    def to_document(self) -> dict:
        return {
            "trackedAppointments": {
                identity: record.model_dump(mode="json", by_alias=True)
                for identity, record in self._records.items()
            }
        }

    def save(self) -> bool:
        """Persist full document. On failure keep memory state and return False."""
        try:
            atomic_write_json(self.path, self.to_document())
        except PersistenceError as e:
            logger.warning("Failed to save tracking data, keeping in-memory state: %s", e)
            return False
        return True


class NotificationLedger:
    """Map of content key -> last notified timestamp, backed by a JSON file."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow) -> None:
        self.path = Path(path)
        self._clock = clock
        self._entries: Dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[datetime]:
        return self._entries.get(key)

    def record(self, key: str, at: datetime) -> None:
        self._entries[key] = as_utc(at)

    def remove(self, key: str) -> Optional[datetime]:
        return self._entries.pop(key, None)

    def items(self) -> List[Tuple[str, datetime]]:
        return list(self._entries.items())

    def load(self) -> int:
        self._entries = {}
        raw = _read_document(self.path, "notification ledger")
        if raw is None:
            logger.info("Starting with fresh notification tracking data")
            return 0

        entries = raw.get("notifiedAppointmentKeys") or {}
        if not isinstance(entries, dict):
            logger.warning("Discarding notification ledger in %s: malformed notifiedAppointmentKeys", self.path)
            return 0

        for key, value in entries.items():
            try:
                self._entries[key] = as_utc(_TIMESTAMP.validate_python(value))
            except ValidationError:
                logger.warning("Skipping malformed ledger entry %s: %r", key, value)

        logger.info("Loaded notification tracking data for %s appointment keys", len(self._entries))
        return len(self._entries)

    def to_document(self) -> dict:
        return {
            "version": LEDGER_VERSION,
            "lastUpdated": self._clock().isoformat(),
            "notifiedAppointmentKeys": {
                key: ts.isoformat() for key, ts in self._entries.items()
            },
        }

    def save(self) -> bool:
        try:
            atomic_write_json(self.path, self.to_document())
        except PersistenceError as e:
            # Продолжаем с журналом в памяти, следующая запись повторит попытку
            logger.warning("Failed to save notification ledger, keeping in-memory state: %s", e)
            return False
        return True


__all__ = ["LEDGER_VERSION", "TrackingStore", "NotificationLedger"]
