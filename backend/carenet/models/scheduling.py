"""
Provider scheduling models.

These tables support:
1. Providers (professionals and clinics) with their slot settings
2. Weekly availability templates (one row per provider and day)
3. Schedule exceptions (vacations, time off), including recurrences
4. Appointments, read here as bookings and as billable events
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Integer, Date, Time, Boolean, Text, Numeric, Uuid,
)
from sqlalchemy.orm import relationship
import enum

from carenet.db.postgres import Base


class AppointmentStatus(enum.Enum):
    """Appointment lifecycle status."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


class Provider(Base):
    """
    Schedulable provider.

    `kind` discriminates professionals from clinics; both share the same
    columns so callers never switch on it to read name or address.
    """

    __tablename__ = "provider"

    provider_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    kind = Column(String(20), nullable=False, default="professional")  # professional, clinic
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)

    # Slot settings (null slot_duration = use configured defaults)
    slot_duration = Column(Integer, nullable=True)  # minutes
    buffer_time = Column(Integer, nullable=True)  # minutes
    max_daily_appointments = Column(Integer, nullable=True)
    advance_booking_days = Column(Integer, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    schedules = relationship("ProviderSchedule", back_populates="provider", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "provider_id": str(self.provider_id),
            "kind": self.kind,
            "name": self.name,
            "address": self.address,
            "slot_duration": self.slot_duration,
            "buffer_time": self.buffer_time,
            "max_daily_appointments": self.max_daily_appointments,
            "advance_booking_days": self.advance_booking_days,
            "is_active": self.is_active,
        }


class ProviderSchedule(Base):
    """
    Provider weekly availability template.

    Defines the recurring weekly schedule for a provider,
    e.g., "Mondays 9am-12pm, break 10:30-11:00, at location X".
    Replaced wholesale on update.
    """

    __tablename__ = "provider_schedule"

    schedule_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(
        Uuid,
        ForeignKey("provider.provider_id"),
        nullable=False,
        index=True,
    )

    # Day of week (0=Sunday, 6=Saturday)
    day_of_week = Column(Integer, nullable=False)

    # Time range
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    # Optional break window inside [start_time, end_time)
    break_start = Column(Time, nullable=True)
    break_end = Column(Time, nullable=True)

    location_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    provider = relationship("Provider", back_populates="schedules")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "schedule_id": str(self.schedule_id),
            "provider_id": str(self.provider_id),
            "day_of_week": self.day_of_week,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "is_available": self.is_available,
            "break_start": self.break_start.strftime("%H:%M") if self.break_start else None,
            "break_end": self.break_end.strftime("%H:%M") if self.break_end else None,
            "location_id": self.location_id,
        }


class ScheduleException(Base):
    """
    Schedule exceptions (vacation, sick leave, personal time).

    Overrides the regular ProviderSchedule for a date range. A null
    start_time means the whole day. Recurring exceptions are expanded
    into child rows pointing back at the parent.
    """

    __tablename__ = "schedule_exception"

    exception_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(
        Uuid,
        ForeignKey("provider.provider_id"),
        nullable=False,
        index=True,
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    exception_type = Column(String(50), nullable=False)  # vacation, sick_leave, personal, other

    # Date range (inclusive)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # Time range (null = all day)
    is_all_day = Column(Boolean, default=True, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)

    location_id = Column(String(64), nullable=True)

    # Recurrence
    recurrence_pattern = Column(String(20), default="none", nullable=False)  # none, daily, weekly, monthly
    recurrence_end_date = Column(Date, nullable=True)
    parent_exception_id = Column(
        Uuid,
        ForeignKey("schedule_exception.exception_id", ondelete="CASCADE"),
        nullable=True,
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "exception_id": str(self.exception_id),
            "provider_id": str(self.provider_id),
            "title": self.title,
            "exception_type": self.exception_type,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_all_day": self.is_all_day,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "recurrence_pattern": self.recurrence_pattern,
            "parent_exception_id": str(self.parent_exception_id) if self.parent_exception_id else None,
        }


class Appointment(Base):
    """
    Appointment with a provider.

    Non-cancelled rows occupy slots; rows in a billable status with a
    health plan are billable events.
    """

    __tablename__ = "appointment"

    appointment_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(
        Uuid,
        ForeignKey("provider.provider_id"),
        nullable=False,
        index=True,
    )
    health_plan_id = Column(
        Uuid,
        ForeignKey("health_plan.health_plan_id"),
        nullable=True,
        index=True,
    )

    scheduled_at = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(20), default=AppointmentStatus.SCHEDULED.value, nullable=False)

    amount = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "appointment_id": str(self.appointment_id),
            "provider_id": str(self.provider_id),
            "health_plan_id": str(self.health_plan_id) if self.health_plan_id else None,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status,
            "amount": float(self.amount) if self.amount is not None else None,
        }
