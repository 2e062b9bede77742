"""
AvailabilityService: free-slot computation for a provider's day.

Given the weekly template, date-range exceptions, existing bookings and
slot settings, computes the ordered list of bookable [start, end) slots.
Read-only: safe to call concurrently for any provider.

Overlap tests are half-open (end-exclusive), so a booking ending at
10:00 does not collide with a slot starting at 10:00.

Known gap, kept on purpose: partial-day exceptions (those with a
start_time) are validated when created but never subtract individual
slots here. Only full-day exceptions close a day.
"""

import uuid
import logging
from datetime import date, time, timedelta
from typing import Dict, List, Optional, Tuple

from carenet.config import SchedulingSettings
from carenet.domain import (
    BookedSlot,
    DayAvailability,
    ScheduleException,
    ScheduleTemplate,
    Slot,
    SlotAvailability,
    SlotConfig,
    UnavailableReason,
    Weekday,
)
from carenet.domain.scheduling import minutes_to_time, time_to_minutes
from carenet.errors import NotFoundError, ValidationError
from carenet.repositories.base import ScheduleRepository


def ranges_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open interval overlap: [a) and [b) share at least one minute."""
    return start_a < end_b and end_a > start_b


def format_slot(start: time, end: time, clock_format: str = "12h") -> str:
    """Display string for a slot, e.g. "9:00 AM - 9:30 AM"."""
    if clock_format == "24h":
        return f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}"
    return f"{_twelve_hour(start)} - {_twelve_hour(end)}"


def _twelve_hour(value: time) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def enumerate_slots(
    template: ScheduleTemplate,
    slot_config: SlotConfig,
    booked: List[BookedSlot],
    clock_format: str = "12h",
) -> List[Slot]:
    """
    Walk the template window in slot_duration steps.

    A candidate is skipped if it overlaps the break or any booking, or
    if its buffered end would pass the window end. Buffer time is added
    to the cursor only after an accepted slot.
    """
    window_start = time_to_minutes(template.start_time)
    window_end = time_to_minutes(template.end_time)
    duration = slot_config.slot_duration
    buffer = slot_config.buffer_time or 0

    if duration <= 0:
        return []

    busy: List[Tuple[int, int]] = [
        (time_to_minutes(b.start_time), time_to_minutes(b.end_time)) for b in booked
    ]
    if template.has_break:
        busy.insert(0, (time_to_minutes(template.break_start), time_to_minutes(template.break_end)))

    slots: List[Slot] = []
    cursor = window_start

    while cursor + duration <= window_end:
        slot_start = cursor
        slot_end = cursor + duration

        if any(ranges_overlap(slot_start, slot_end, b_start, b_end) for b_start, b_end in busy):
            cursor = slot_end
            continue

        if slot_end + buffer > window_end:
            cursor = slot_end
            continue

        start_t = minutes_to_time(slot_start)
        end_t = minutes_to_time(slot_end)
        slots.append(Slot(start=start_t, end=end_t, display=format_slot(start_t, end_t, clock_format)))
        cursor = slot_end + buffer

    return slots


class AvailabilityService:
    """
    Computes slot availability and availability calendars.

    Usage:
        service = AvailabilityService(repository)
        result = service.compute_available_slots(provider_id, date(2026, 3, 2))
        for slot in result.slots:
            print(slot.display)
    """

    def __init__(
        self,
        repository: Optional[ScheduleRepository] = None,
        settings: Optional[SchedulingSettings] = None,
    ):
        self._repository = repository
        self.settings = settings or SchedulingSettings.from_config()
        self.logger = logging.getLogger("service.AvailabilityService")

    @property
    def repository(self) -> ScheduleRepository:
        if self._repository is None:
            from carenet.repositories.sql import SqlScheduleRepository
            self._repository = SqlScheduleRepository()
        return self._repository

    # -------------------------------------------------------------------------
    # Slot computation
    # -------------------------------------------------------------------------

    def compute_available_slots(
        self,
        provider_id: uuid.UUID,
        day: date,
        location_id: Optional[str] = None,
    ) -> SlotAvailability:
        """
        Free slots for one provider on one date.

        Returns an empty result with a reason when the day is not in the
        regular schedule, a full-day exception covers it, the template's
        location differs from location_id, or the daily cap is reached.
        """
        self._require_provider(provider_id)
        result = SlotAvailability(provider_id=provider_id, day=day)

        template = self._template_for(provider_id, day)
        if template is None:
            result.reason = UnavailableReason.NOT_IN_REGULAR_SCHEDULE
            return result

        exceptions = self.repository.get_exceptions(provider_id, day, day)
        if self._full_day_exception(exceptions, day) is not None:
            result.reason = UnavailableReason.SCHEDULE_EXCEPTION
            return result

        if not self._location_matches(template, location_id):
            result.reason = UnavailableReason.LOCATION_MISMATCH
            return result

        slot_config = self.slot_config_for(provider_id)
        booked = [b for b in self.repository.get_booked_slots(provider_id, day, day) if b.day == day]

        slots = enumerate_slots(template, slot_config, booked, self.settings.clock_format)

        if slot_config.max_daily_appointments:
            remaining = slot_config.max_daily_appointments - len(booked)
            if remaining <= 0:
                result.reason = UnavailableReason.MAX_APPOINTMENTS_REACHED
                return result
            slots = slots[:remaining]

        result.slots = slots
        self.logger.debug(f"Provider {provider_id} on {day.isoformat()}: {len(slots)} slots")
        return result

    # -------------------------------------------------------------------------
    # Calendar
    # -------------------------------------------------------------------------

    def compute_availability_calendar(
        self,
        provider_id: uuid.UUID,
        start_date: date,
        end_date: date,
        location_id: Optional[str] = None,
    ) -> List[DayAvailability]:
        """
        Day-by-day availability for an inclusive date range.

        The span is capped at settings.calendar_max_span_days. This is a
        coarse check (template, full-day exception, location, daily cap);
        a day marked available may still have no free slot.
        """
        if end_date < start_date:
            raise ValidationError(
                "end_date must be on or after start_date",
                errors={"end_date": "must be on or after start_date"},
            )
        self._require_provider(provider_id)

        max_span = self.settings.calendar_max_span_days
        if (end_date - start_date).days > max_span:
            end_date = start_date + timedelta(days=max_span)

        templates = {t.day_of_week: t for t in self.repository.get_templates(provider_id)}
        exceptions = self.repository.get_exceptions(provider_id, start_date, end_date)
        counts: Dict[date, int] = {}
        for booking in self.repository.get_booked_slots(provider_id, start_date, end_date):
            counts[booking.day] = counts.get(booking.day, 0) + 1
        max_daily = self.slot_config_for(provider_id).max_daily_appointments

        calendar: List[DayAvailability] = []
        current = start_date
        while current <= end_date:
            weekday = Weekday.of(current)
            entry = DayAvailability(day=current, day_of_week=weekday)
            template = templates.get(weekday)

            if template is None or not template.is_available:
                entry.reason = UnavailableReason.NOT_IN_REGULAR_SCHEDULE
            else:
                blocking = self._full_day_exception(exceptions, current)
                if blocking is not None:
                    entry.reason = UnavailableReason.SCHEDULE_EXCEPTION
                    entry.exception_title = blocking.title
                elif not self._location_matches(template, location_id):
                    entry.reason = UnavailableReason.LOCATION_MISMATCH
                else:
                    entry.template = template
                    entry.appointment_count = counts.get(current, 0)
                    if max_daily and entry.appointment_count >= max_daily:
                        entry.reason = UnavailableReason.MAX_APPOINTMENTS_REACHED
                    else:
                        entry.is_available = True

            calendar.append(entry)
            current += timedelta(days=1)

        return calendar

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def booking_window(self, provider_id: uuid.UUID, today: date) -> Tuple[date, date]:
        """Inclusive date range open for booking."""
        days = self.slot_config_for(provider_id).advance_booking_days
        return today, today + timedelta(days=days)

    def slot_config_for(self, provider_id: uuid.UUID) -> SlotConfig:
        slot_config = self.repository.get_slot_config(provider_id)
        if slot_config is None:
            slot_config = SlotConfig(
                slot_duration=self.settings.default_slot_duration,
                buffer_time=self.settings.default_buffer_time,
                advance_booking_days=self.settings.default_advance_booking_days,
            )
        return slot_config

    def _require_provider(self, provider_id: uuid.UUID) -> None:
        if self.repository.get_provider(provider_id) is None:
            raise NotFoundError(f"Provider {provider_id} not found")

    def _template_for(self, provider_id: uuid.UUID, day: date) -> Optional[ScheduleTemplate]:
        weekday = Weekday.of(day)
        for template in self.repository.get_templates(provider_id):
            if template.day_of_week == weekday and template.is_available:
                return template
        return None

    @staticmethod
    def _full_day_exception(
        exceptions: List[ScheduleException], day: date
    ) -> Optional[ScheduleException]:
        for exception in exceptions:
            if exception.is_full_day and exception.covers(day):
                return exception
        return None

    @staticmethod
    def _location_matches(template: ScheduleTemplate, location_id: Optional[str]) -> bool:
        if location_id is None or template.location_id is None:
            return True
        return str(template.location_id) == str(location_id)
