"""Scheduling domain types.

Plain dataclasses shared by the availability engine, the committer and the
store implementations. All instants are timezone-aware UTC.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    COMPLETED = "completed"


# Statuses that occupy the professional's calendar
BLOCKING_STATUSES = frozenset(
    s for s in AppointmentStatus if s != AppointmentStatus.CANCELLED
)


class Modality(str, Enum):
    """Where the appointment takes place."""

    IN_PERSON = "in_person"
    REMOTE = "remote"


@dataclass(frozen=True)
class Slot:
    """A candidate bookable [start, end) interval in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Slot start must precede end: {self.start} >= {self.end}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap test."""
        return self.start < end and start < self.end

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "Slot":
        return cls(
            start=_as_utc(datetime.fromisoformat(data["start"])),
            end=_as_utc(datetime.fromisoformat(data["end"])),
        )


@dataclass(frozen=True)
class WorkingHours:
    """Daily opening window in the professional's local time."""

    start: time = time(9, 0)
    end: time = time(18, 0)
    days: frozenset[int] = frozenset({0, 1, 2, 3, 4})  # Monday=0

    def is_working_day(self, weekday: int) -> bool:
        return weekday in self.days


@dataclass
class Professional:
    """The calendar owner being booked."""

    id: uuid.UUID
    name: str
    timezone: str
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    contact: Optional[str] = None
    calendar_id: Optional[str] = None


@dataclass
class Counterpart:
    """The person requesting an appointment."""

    id: uuid.UUID
    professional_id: uuid.UUID
    contact: str
    name: str = "Paciente"

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else ""


@dataclass
class ServiceOffering:
    """A bookable service of a professional."""

    id: uuid.UUID
    professional_id: uuid.UUID
    name: str
    duration_minutes: int = 30
    price: Optional[Decimal] = None
    enabled: bool = True


@dataclass
class BlackoutPeriod:
    """Interval in which nothing can be booked."""

    id: uuid.UUID
    professional_id: uuid.UUID
    start: datetime
    end: datetime
    reason: Optional[str] = None


@dataclass
class NewAppointment:
    """Appointment data before it is persisted."""

    professional_id: uuid.UUID
    counterpart_id: uuid.UUID
    start: datetime
    end: datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    modality: Modality = Modality.IN_PERSON
    service_id: Optional[uuid.UUID] = None
    price: Optional[Decimal] = None
    notes: Optional[str] = None


@dataclass
class Appointment:
    """A persisted appointment."""

    id: uuid.UUID
    professional_id: uuid.UUID
    counterpart_id: uuid.UUID
    start: datetime
    end: datetime
    status: AppointmentStatus
    modality: Modality
    service_id: Optional[uuid.UUID] = None
    price: Optional[Decimal] = None
    notes: Optional[str] = None

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass
class CalendarEventLink:
    """Mapping between an appointment and its external calendar event."""

    appointment_id: uuid.UUID
    provider: str
    external_event_id: Optional[str] = None
    sync_error: Optional[str] = None

    @property
    def is_synced(self) -> bool:
        return self.external_event_id is not None


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
