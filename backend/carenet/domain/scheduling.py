"""
Scheduling value types for the availability engine.

Day-of-week numbering is Sunday=0 .. Saturday=6 everywhere in this
package (templates, weekly billing rules, calendar output). Python's
date.weekday() is Monday=0, so always convert through Weekday.of().
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class Weekday(IntEnum):
    """Day of week, Sunday-based."""
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, day: date) -> "Weekday":
        """Weekday of a date (Python's Monday=0 shifted to Sunday=0)."""
        return cls((day.weekday() + 1) % 7)


class ProviderKind(str, Enum):
    """Kind of care provider that owns a schedule."""
    PROFESSIONAL = "professional"
    CLINIC = "clinic"


class ExceptionType(str, Enum):
    """Reason a schedule exception removes availability."""
    VACATION = "vacation"
    SICK_LEAVE = "sick_leave"
    PERSONAL = "personal"
    OTHER = "other"


class RecurrencePattern(str, Enum):
    """How a schedule exception repeats."""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class UnavailableReason(str, Enum):
    """Machine-readable reason for an empty availability result."""
    NOT_IN_REGULAR_SCHEDULE = "not_in_regular_schedule"
    SCHEDULE_EXCEPTION = "schedule_exception"
    LOCATION_MISMATCH = "location_mismatch"
    MAX_APPOINTMENTS_REACHED = "max_appointments_reached"


def time_to_minutes(value: time) -> int:
    """Minutes since midnight."""
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


@dataclass
class Provider:
    """
    A schedulable provider: a professional or a clinic.

    Both kinds expose the same surface, so callers never branch on kind
    to reach the name or address.
    """
    id: uuid.UUID
    kind: ProviderKind
    name: str
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "kind": self.kind.value,
            "name": self.name,
            "address": self.address,
        }


@dataclass
class SlotConfig:
    """Per-provider slot settings."""
    slot_duration: int = 30  # minutes
    buffer_time: int = 0  # minutes appended after each accepted slot
    max_daily_appointments: Optional[int] = None
    advance_booking_days: int = 30


@dataclass
class ScheduleTemplate:
    """One weekly availability row for a (provider, day_of_week)."""
    day_of_week: Weekday
    start_time: time
    end_time: time
    is_available: bool = True
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    location_id: Optional[str] = None

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day_of_week": int(self.day_of_week),
            "day_name": Weekday(self.day_of_week).name.title(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "is_available": self.is_available,
            "break_start": self.break_start.strftime("%H:%M") if self.break_start else None,
            "break_end": self.break_end.strftime("%H:%M") if self.break_end else None,
            "location_id": self.location_id,
        }


@dataclass
class ScheduleException:
    """
    Date-range override of a provider's availability.

    A missing start_time marks a full-day exception; only those block
    slot computation.
    """
    provider_id: uuid.UUID
    title: str
    start_date: date
    end_date: date
    exception_type: ExceptionType = ExceptionType.OTHER
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    description: Optional[str] = None
    location_id: Optional[str] = None
    recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE
    recurrence_end_date: Optional[date] = None
    parent_exception_id: Optional[uuid.UUID] = None
    id: Optional[uuid.UUID] = None

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "provider_id": str(self.provider_id),
            "title": self.title,
            "description": self.description,
            "exception_type": self.exception_type.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "is_all_day": self.is_full_day,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "location_id": self.location_id,
            "recurrence_pattern": self.recurrence_pattern.value,
            "recurrence_end_date": self.recurrence_end_date.isoformat() if self.recurrence_end_date else None,
            "parent_exception_id": str(self.parent_exception_id) if self.parent_exception_id else None,
        }


@dataclass(frozen=True)
class BookedSlot:
    """A non-cancelled appointment projected onto its day."""
    day: date
    start_time: time
    end_time: time


@dataclass(frozen=True)
class Slot:
    """A free [start, end) range; `display` is presentation only."""
    start: time
    end: time
    display: str = field(default="", compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
            "formatted": self.display,
        }


@dataclass
class SlotAvailability:
    """Result of a single-day slot computation."""
    provider_id: uuid.UUID
    day: date
    slots: List[Slot] = field(default_factory=list)
    reason: Optional[UnavailableReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": str(self.provider_id),
            "date": self.day.isoformat(),
            "available_slots": [s.to_dict() for s in self.slots],
            "reason": self.reason.value if self.reason else None,
        }


@dataclass
class DayAvailability:
    """Coarse per-day availability used by calendar views."""
    day: date
    day_of_week: Weekday
    is_available: bool = False
    reason: Optional[UnavailableReason] = None
    exception_title: Optional[str] = None
    template: Optional[ScheduleTemplate] = None
    appointment_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        window = None
        if self.template is not None and self.is_available:
            window = {
                "start_time": self.template.start_time.strftime("%H:%M"),
                "end_time": self.template.end_time.strftime("%H:%M"),
                "break_start": self.template.break_start.strftime("%H:%M") if self.template.break_start else None,
                "break_end": self.template.break_end.strftime("%H:%M") if self.template.break_end else None,
            }
        return {
            "date": self.day.isoformat(),
            "day_of_week": int(self.day_of_week),
            "is_available": self.is_available,
            "reason": self.reason.value if self.reason else None,
            "exception_title": self.exception_title,
            "time_slots": window,
            "appointment_count": self.appointment_count,
        }
