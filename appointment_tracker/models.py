"""
Pydantic models for appointment tracking domain.

Pydantic-модели: слоты, история статусов, решения об уведомлениях.
"""

from __future__ import annotations

from datetime import date as calendar_date, datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class AppointmentStatus(str, Enum):
    AVAILABLE = "available"
    FILLED = "filled"
    PENDING = "pending"
    NOT_REGISTERABLE = "not-registerable"
    UNKNOWN = "unknown"


# Старые выгрузки писали "full" вместо "filled"
_STATUS_ALIASES = {"full": AppointmentStatus.FILLED}

# Never allowed in a notification batch
UNNOTIFIABLE_STATUSES = frozenset({AppointmentStatus.FILLED, AppointmentStatus.UNKNOWN})


def _coerce_status(value: Any) -> Any:
    """Map legacy and unrecognised status strings; anything unclassifiable is unknown."""
    if isinstance(value, AppointmentStatus) or not isinstance(value, str):
        return value
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    try:
        return AppointmentStatus(value)
    except ValueError:
        return AppointmentStatus.UNKNOWN


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Document(BaseModel):
    """Base for models persisted to JSON documents with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Appointment(_Document):
    """Single appointment slot as delivered by the upstream fetch layer."""

    model_config = ConfigDict(frozen=True)

    id: str
    date: calendar_date
    time: str
    location: Optional[str] = None
    exam_category: str
    city: str = ""
    status: AppointmentStatus = AppointmentStatus.UNKNOWN
    price: Optional[float] = None
    registration_url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_exam_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and "examType" in data:
            if "examCategory" not in data and "exam_category" not in data:
                data = {**data, "examCategory": data["examType"]}
        return data

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> Any:
        return _coerce_status(value)

    @property
    def is_available(self) -> bool:
        return self.status is AppointmentStatus.AVAILABLE


class StatusChange(_Document):
    timestamp: datetime
    previous_status: AppointmentStatus
    new_status: AppointmentStatus
    reason: str

    @field_validator("previous_status", "new_status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> Any:
        return _coerce_status(value)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def went_unavailable(self) -> bool:
        return (
            self.previous_status is AppointmentStatus.AVAILABLE
            and self.new_status is not AppointmentStatus.AVAILABLE
        )

    @property
    def became_available(self) -> bool:
        return (
            self.previous_status is not AppointmentStatus.AVAILABLE
            and self.new_status is AppointmentStatus.AVAILABLE
        )


class TrackedAppointment(_Document):
    """Tracking record for one ephemeral identity, owned by the tracking store."""

    appointment: Appointment
    first_seen: datetime
    last_seen: datetime
    status_history: List[StatusChange] = Field(default_factory=list)
    notifications_sent: int = Field(default=0, ge=0)

    @field_validator("first_seen", "last_seen")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def identity(self) -> str:
        return self.appointment.id


class Decision(BaseModel):
    """Why a candidate was or was not included in a notification batch."""

    appointment: Appointment
    key: str
    should_notify: bool
    reason: str
    status_history: Optional[List[StatusChange]] = None
    last_notified_at: Optional[datetime] = None
    notification_count: int = 0


class DetectionResult(BaseModel):
    newly_available: List[Appointment] = Field(default_factory=list)
    status_changed: List[Appointment] = Field(default_factory=list)
    removed: List[TrackedAppointment] = Field(default_factory=list)
    all_tracked: List[TrackedAppointment] = Field(default_factory=list)


class CleanupResult(BaseModel):
    tracking_removed: int = 0
    ledger_removed: int = 0


class TrackingStatistics(BaseModel):
    total_tracked: int = 0
    available_count: int = 0
    filled_count: int = 0
    pending_count: int = 0
    not_registerable_count: int = 0
    unknown_count: int = 0
    total_notifications_sent: int = 0
    average_tracking_seconds: float = 0.0
    notified_keys_count: int = 0


class MonitorState(BaseModel):
    """State of monitoring loop, used internally."""

    is_running: bool = False
    last_check_at: Optional[datetime] = None
    last_cleanup_at: Optional[datetime] = None
    last_error: Optional[str] = None
    checks_count: int = 0
    notifications_total: int = 0


__all__ = [
    "AppointmentStatus",
    "UNNOTIFIABLE_STATUSES",
    "Appointment",
    "StatusChange",
    "TrackedAppointment",
    "Decision",
    "DetectionResult",
    "CleanupResult",
    "TrackingStatistics",
    "MonitorState",
    "as_utc",
    "utcnow",
]
