"""
ScheduleManagementService: writes to a provider's schedule.

Handles:
1. Wholesale replacement of weekly templates and slot settings
2. Schedule exceptions (vacations, time off) with recurrence expansion
3. Exception removal

All validation happens before anything is written; a rejected request
leaves no partial state.
"""

import uuid
import logging
from dataclasses import dataclass, replace
from datetime import date, time
from typing import Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from carenet.config import SchedulingSettings
from carenet.domain import (
    ExceptionType,
    RecurrencePattern,
    ScheduleException,
    ScheduleTemplate,
    SlotConfig,
    Weekday,
)
from carenet.errors import NotFoundError, ValidationError
from carenet.repositories.base import ScheduleRepository

# Bounds accepted for slot settings
SLOT_DURATION_RANGE = (5, 240)
BUFFER_TIME_RANGE = (0, 60)
ADVANCE_BOOKING_RANGE = (1, 365)


@dataclass
class ExceptionRequest:
    """Input for add_exception. Leave start_time/end_time unset for a full day."""
    title: str
    start_date: date
    end_date: date
    exception_type: str = ExceptionType.OTHER.value
    is_all_day: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    description: Optional[str] = None
    location_id: Optional[str] = None
    recurrence_pattern: str = RecurrencePattern.NONE.value
    recurrence_end_date: Optional[date] = None


class ScheduleManagementService:
    """
    Validated writes to provider schedules.

    Usage:
        service = ScheduleManagementService(repository)
        created = service.add_exception(provider_id, ExceptionRequest(
            title="Vacation",
            start_date=date(2026, 7, 1),
            end_date=date(2026, 7, 14),
            exception_type="vacation",
        ))
    """

    def __init__(
        self,
        repository: Optional[ScheduleRepository] = None,
        settings: Optional[SchedulingSettings] = None,
    ):
        self._repository = repository
        self.settings = settings or SchedulingSettings.from_config()
        self.logger = logging.getLogger("service.ScheduleManagementService")

    @property
    def repository(self) -> ScheduleRepository:
        if self._repository is None:
            from carenet.repositories.sql import SqlScheduleRepository
            self._repository = SqlScheduleRepository()
        return self._repository

    # -------------------------------------------------------------------------
    # Weekly templates
    # -------------------------------------------------------------------------

    def update_schedule(
        self,
        provider_id: uuid.UUID,
        templates: Iterable[ScheduleTemplate],
        slot_duration: Optional[int] = None,
        buffer_time: Optional[int] = None,
        max_daily_appointments: Optional[int] = None,
        advance_booking_days: Optional[int] = None,
    ) -> SlotConfig:
        """
        Replace the provider's templates and slot settings wholesale.

        Omitted settings fall back to the configured defaults rather than
        to the provider's previous values.
        """
        self._require_provider(provider_id)
        templates = list(templates)

        errors: Dict[str, str] = {}
        seen_days = set()
        for index, template in enumerate(templates):
            for field_name, message in self._template_errors(template).items():
                errors[f"schedule.{index}.{field_name}"] = message
            if template.day_of_week in seen_days:
                errors[f"schedule.{index}.day_of_week"] = "duplicate day_of_week"
            seen_days.add(template.day_of_week)

        slot_config = SlotConfig(
            slot_duration=slot_duration if slot_duration is not None else self.settings.default_slot_duration,
            buffer_time=buffer_time if buffer_time is not None else self.settings.default_buffer_time,
            max_daily_appointments=max_daily_appointments,
            advance_booking_days=(
                advance_booking_days if advance_booking_days is not None
                else self.settings.default_advance_booking_days
            ),
        )
        errors.update(self._slot_config_errors(slot_config))

        if errors:
            raise ValidationError("Invalid schedule", errors=errors)

        normalized = [replace(t, day_of_week=Weekday(t.day_of_week)) for t in templates]
        self.repository.run_in_transaction(
            lambda: self.repository.replace_schedule(provider_id, normalized, slot_config)
        )
        self.logger.info(f"Replaced schedule for provider {provider_id} ({len(normalized)} days)")
        return slot_config

    @staticmethod
    def _template_errors(template: ScheduleTemplate) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if int(template.day_of_week) not in range(7):
            errors["day_of_week"] = "must be between 0 (Sunday) and 6 (Saturday)"
        if template.end_time <= template.start_time:
            errors["end_time"] = "must be after start_time"

        has_start = template.break_start is not None
        has_end = template.break_end is not None
        if has_start != has_end:
            errors["break_end" if has_start else "break_start"] = "break_start and break_end go together"
        elif has_start:
            if template.break_end <= template.break_start:
                errors["break_end"] = "must be after break_start"
            elif template.break_start < template.start_time or template.break_end > template.end_time:
                errors["break_start"] = "break must lie within the working window"
        return errors

    @staticmethod
    def _slot_config_errors(slot_config: SlotConfig) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        low, high = SLOT_DURATION_RANGE
        if not low <= slot_config.slot_duration <= high:
            errors["slot_duration"] = f"must be between {low} and {high}"
        low, high = BUFFER_TIME_RANGE
        if not low <= slot_config.buffer_time <= high:
            errors["buffer_time"] = f"must be between {low} and {high}"
        if slot_config.max_daily_appointments is not None and slot_config.max_daily_appointments < 1:
            errors["max_daily_appointments"] = "must be at least 1"
        low, high = ADVANCE_BOOKING_RANGE
        if not low <= slot_config.advance_booking_days <= high:
            errors["advance_booking_days"] = f"must be between {low} and {high}"
        return errors

    # -------------------------------------------------------------------------
    # Exceptions
    # -------------------------------------------------------------------------

    def add_exception(
        self, provider_id: uuid.UUID, request: ExceptionRequest
    ) -> List[ScheduleException]:
        """
        Create an exception, plus its recurrences.

        Returns the parent first, followed by generated children.
        Rejected with reason "overlapping_bookings" when non-cancelled
        bookings fall inside [start_date, end_date].
        """
        self._require_provider(provider_id)
        exception_type, pattern = self._validate_exception(request)

        if self.repository.has_active_bookings(provider_id, request.start_date, request.end_date):
            raise ValidationError(
                "There are already scheduled appointments during this period",
                reason="overlapping_bookings",
            )

        parent = ScheduleException(
            provider_id=provider_id,
            title=request.title,
            description=request.description,
            start_date=request.start_date,
            end_date=request.end_date,
            exception_type=exception_type,
            start_time=None if request.is_all_day else request.start_time,
            end_time=None if request.is_all_day else request.end_time,
            location_id=request.location_id,
            recurrence_pattern=pattern,
            recurrence_end_date=request.recurrence_end_date if pattern != RecurrencePattern.NONE else None,
        )

        def _create() -> List[ScheduleException]:
            saved = self.repository.add_exception(parent)
            created = [saved]
            for child in expand_recurrence(saved):
                created.append(self.repository.add_exception(child))
            return created

        created = self.repository.run_in_transaction(_create)
        self.logger.info(
            f"Added {exception_type.value} exception for provider {provider_id} "
            f"({request.start_date.isoformat()}..{request.end_date.isoformat()}, "
            f"{len(created) - 1} recurrences)"
        )
        return created

    def remove_exception(self, provider_id: uuid.UUID, exception_id: uuid.UUID) -> int:
        """Delete an exception and the occurrences generated from it."""
        if self.repository.get_exception(provider_id, exception_id) is None:
            raise NotFoundError(f"Schedule exception {exception_id} not found")

        removed = self.repository.run_in_transaction(
            lambda: self.repository.delete_exception(provider_id, exception_id)
        )
        self.logger.info(f"Removed exception {exception_id} for provider {provider_id} ({removed} rows)")
        return removed

    def _validate_exception(self, request: ExceptionRequest):
        errors: Dict[str, str] = {}

        if not request.title or not request.title.strip():
            errors["title"] = "is required"
        elif len(request.title) > 255:
            errors["title"] = "must be at most 255 characters"

        if request.end_date < request.start_date:
            errors["end_date"] = "must be on or after start_date"

        if not request.is_all_day:
            if request.start_time is None:
                errors["start_time"] = "is required for partial-day exceptions"
            if request.end_time is None:
                errors["end_time"] = "is required for partial-day exceptions"
            elif request.start_time is not None and request.end_time <= request.start_time:
                errors["end_time"] = "must be after start_time"

        try:
            exception_type = ExceptionType(request.exception_type)
        except ValueError:
            exception_type = None
            errors["exception_type"] = "must be one of " + ", ".join(t.value for t in ExceptionType)

        try:
            pattern = RecurrencePattern(request.recurrence_pattern or RecurrencePattern.NONE.value)
        except ValueError:
            pattern = None
            errors["recurrence_pattern"] = "must be one of " + ", ".join(p.value for p in RecurrencePattern)

        if pattern is not None and pattern != RecurrencePattern.NONE:
            if request.recurrence_end_date is None:
                errors["recurrence_end_date"] = "is required for recurring exceptions"
            elif request.recurrence_end_date <= request.end_date:
                errors["recurrence_end_date"] = "must be after end_date"

        if errors:
            raise ValidationError("Invalid schedule exception", errors=errors)
        return exception_type, pattern

    def _require_provider(self, provider_id: uuid.UUID) -> None:
        if self.repository.get_provider(provider_id) is None:
            raise NotFoundError(f"Provider {provider_id} not found")


_RECURRENCE_STEPS = {
    RecurrencePattern.DAILY: lambda n: relativedelta(days=n),
    RecurrencePattern.WEEKLY: lambda n: relativedelta(weeks=n),
    RecurrencePattern.MONTHLY: lambda n: relativedelta(months=n),
}


def expand_recurrence(parent: ScheduleException) -> List[ScheduleException]:
    """
    Child occurrences of a recurring exception.

    Each child keeps the parent's duration, does not recur itself and
    points back at the parent. Occurrences start strictly after the
    parent and no later than recurrence_end_date. Monthly steps are
    taken from the parent's start so a 31st clamps per month instead
    of drifting.
    """
    step = _RECURRENCE_STEPS.get(parent.recurrence_pattern)
    if step is None or parent.recurrence_end_date is None:
        return []

    duration = parent.end_date - parent.start_date
    children: List[ScheduleException] = []
    n = 1
    while True:
        start = parent.start_date + step(n)
        if start > parent.recurrence_end_date:
            break
        children.append(
            replace(
                parent,
                id=None,
                start_date=start,
                end_date=start + duration,
                recurrence_pattern=RecurrencePattern.NONE,
                recurrence_end_date=None,
                parent_exception_id=parent.id,
            )
        )
        n += 1
    return children
