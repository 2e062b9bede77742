"""
SQLAlchemy implementations of the persistence collaborators.

Rows are mapped to the plain domain types on the way out so the
services never touch ORM objects.
"""

import uuid
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session as DbSession

from carenet.config import BillingSettings
from carenet.db.postgres import get_db_session
from carenet.domain import (
    BatchStatus,
    BillableEvent,
    BillingBatch,
    BillingBatchItem,
    BillingRule,
    BookedSlot,
    ExceptionType,
    HealthPlan,
    Provider,
    ProviderKind,
    RecurrencePattern,
    ScheduleException,
    ScheduleTemplate,
    SlotConfig,
    Weekday,
)
from carenet import models
from carenet.models import AppointmentStatus
from carenet.repositories.base import BillingRepository, ScheduleRepository

T = TypeVar("T")


class _SessionMixin:
    """Shared session handling: explicit session, else the scoped one."""

    _db: Optional[DbSession] = None

    @property
    def db(self) -> DbSession:
        if self._db is None:
            self._db = get_db_session()
        return self._db

    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        try:
            result = fn()
            self.db.commit()
            return result
        except Exception:
            self.db.rollback()
            raise


def _day_bounds(start_date: date, end_date: date):
    """[start 00:00, end + 1 day 00:00) as datetimes."""
    return (
        datetime.combine(start_date, time.min),
        datetime.combine(end_date + timedelta(days=1), time.min),
    )


class SqlScheduleRepository(_SessionMixin, ScheduleRepository):
    """Schedule persistence backed by the provider_* tables."""

    def __init__(self, db_session: Optional[DbSession] = None):
        self._db = db_session
        self.logger = logging.getLogger("repository.SqlScheduleRepository")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_provider(self, provider_id: uuid.UUID) -> Optional[Provider]:
        row = self.db.get(models.Provider, provider_id)
        if row is None or not row.is_active:
            return None
        return Provider(id=row.provider_id, kind=ProviderKind(row.kind), name=row.name, address=row.address)

    def get_slot_config(self, provider_id: uuid.UUID) -> Optional[SlotConfig]:
        row = self.db.get(models.Provider, provider_id)
        if row is None or row.slot_duration is None:
            return None
        config = SlotConfig(
            slot_duration=row.slot_duration,
            buffer_time=row.buffer_time or 0,
            max_daily_appointments=row.max_daily_appointments,
        )
        if row.advance_booking_days is not None:
            config.advance_booking_days = row.advance_booking_days
        return config

    def get_templates(self, provider_id: uuid.UUID) -> List[ScheduleTemplate]:
        rows = (
            self.db.query(models.ProviderSchedule)
            .filter(models.ProviderSchedule.provider_id == provider_id)
            .order_by(models.ProviderSchedule.day_of_week)
            .all()
        )
        return [
            ScheduleTemplate(
                day_of_week=Weekday(row.day_of_week),
                start_time=row.start_time,
                end_time=row.end_time,
                is_available=row.is_available,
                break_start=row.break_start,
                break_end=row.break_end,
                location_id=row.location_id,
            )
            for row in rows
        ]

    def get_exceptions(
        self, provider_id: uuid.UUID, start_date: date, end_date: date
    ) -> List[ScheduleException]:
        rows = (
            self.db.query(models.ScheduleException)
            .filter(
                models.ScheduleException.provider_id == provider_id,
                models.ScheduleException.start_date <= end_date,
                models.ScheduleException.end_date >= start_date,
            )
            .order_by(models.ScheduleException.start_date)
            .all()
        )
        return [self._exception_from_row(row) for row in rows]

    def get_exception(
        self, provider_id: uuid.UUID, exception_id: uuid.UUID
    ) -> Optional[ScheduleException]:
        row = (
            self.db.query(models.ScheduleException)
            .filter(
                models.ScheduleException.provider_id == provider_id,
                models.ScheduleException.exception_id == exception_id,
            )
            .first()
        )
        return self._exception_from_row(row) if row else None

    def get_booked_slots(
        self, provider_id: uuid.UUID, start_date: date, end_date: date
    ) -> List[BookedSlot]:
        range_start, range_end = _day_bounds(start_date, end_date)
        rows = (
            self.db.query(models.Appointment)
            .filter(
                models.Appointment.provider_id == provider_id,
                models.Appointment.status != AppointmentStatus.CANCELLED.value,
                models.Appointment.scheduled_at >= range_start,
                models.Appointment.scheduled_at < range_end,
            )
            .order_by(models.Appointment.scheduled_at)
            .all()
        )
        booked = []
        for row in rows:
            day = row.scheduled_at.date()
            # A booking running past midnight occupies the rest of its start day
            end = row.end_time.time() if row.end_time.date() == day else time(23, 59)
            booked.append(BookedSlot(day=day, start_time=row.scheduled_at.time(), end_time=end))
        return booked

    def has_active_bookings(
        self, provider_id: uuid.UUID, start_date: date, end_date: date
    ) -> bool:
        range_start, range_end = _day_bounds(start_date, end_date)
        stmt = select(
            exists().where(
                models.Appointment.provider_id == provider_id,
                models.Appointment.status != AppointmentStatus.CANCELLED.value,
                models.Appointment.scheduled_at >= range_start,
                models.Appointment.scheduled_at < range_end,
            )
        )
        return bool(self.db.execute(stmt).scalar())

    # -------------------------------------------------------------------------
    # Writes (call inside run_in_transaction)
    # -------------------------------------------------------------------------

    def replace_schedule(
        self,
        provider_id: uuid.UUID,
        templates: List[ScheduleTemplate],
        slot_config: SlotConfig,
    ) -> None:
        self.db.query(models.ProviderSchedule).filter(
            models.ProviderSchedule.provider_id == provider_id
        ).delete(synchronize_session=False)

        for template in templates:
            self.db.add(
                models.ProviderSchedule(
                    provider_id=provider_id,
                    day_of_week=int(template.day_of_week),
                    start_time=template.start_time,
                    end_time=template.end_time,
                    is_available=template.is_available,
                    break_start=template.break_start,
                    break_end=template.break_end,
                    location_id=template.location_id,
                )
            )

        provider = self.db.get(models.Provider, provider_id)
        provider.slot_duration = slot_config.slot_duration
        provider.buffer_time = slot_config.buffer_time
        provider.max_daily_appointments = slot_config.max_daily_appointments
        provider.advance_booking_days = slot_config.advance_booking_days
        self.db.flush()

    def add_exception(self, exception: ScheduleException) -> ScheduleException:
        row = models.ScheduleException(
            provider_id=exception.provider_id,
            title=exception.title,
            description=exception.description,
            exception_type=exception.exception_type.value,
            start_date=exception.start_date,
            end_date=exception.end_date,
            is_all_day=exception.is_full_day,
            start_time=exception.start_time,
            end_time=exception.end_time,
            location_id=exception.location_id,
            recurrence_pattern=exception.recurrence_pattern.value,
            recurrence_end_date=exception.recurrence_end_date,
            parent_exception_id=exception.parent_exception_id,
        )
        self.db.add(row)
        self.db.flush()
        return self._exception_from_row(row)

    def delete_exception(self, provider_id: uuid.UUID, exception_id: uuid.UUID) -> int:
        removed = (
            self.db.query(models.ScheduleException)
            .filter(
                models.ScheduleException.provider_id == provider_id,
                models.ScheduleException.parent_exception_id == exception_id,
            )
            .delete(synchronize_session=False)
        )
        removed += (
            self.db.query(models.ScheduleException)
            .filter(
                models.ScheduleException.provider_id == provider_id,
                models.ScheduleException.exception_id == exception_id,
            )
            .delete(synchronize_session=False)
        )
        return removed

    @staticmethod
    def _exception_from_row(row: models.ScheduleException) -> ScheduleException:
        return ScheduleException(
            id=row.exception_id,
            provider_id=row.provider_id,
            title=row.title,
            description=row.description,
            exception_type=ExceptionType(row.exception_type),
            start_date=row.start_date,
            end_date=row.end_date,
            start_time=row.start_time,
            end_time=row.end_time,
            location_id=row.location_id,
            recurrence_pattern=RecurrencePattern(row.recurrence_pattern or "none"),
            recurrence_end_date=row.recurrence_end_date,
            parent_exception_id=row.parent_exception_id,
        )


class SqlBillingRepository(_SessionMixin, BillingRepository):
    """Billing persistence backed by the billing_* tables."""

    def __init__(
        self,
        db_session: Optional[DbSession] = None,
        settings: Optional[BillingSettings] = None,
    ):
        self._db = db_session
        self.settings = settings or BillingSettings.from_config()
        self.logger = logging.getLogger("repository.SqlBillingRepository")

    def active_health_plans(self) -> List[HealthPlan]:
        rows = (
            self.db.query(models.HealthPlan)
            .filter(
                models.HealthPlan.is_active.is_(True),
                models.HealthPlan.billing_rules.any(models.BillingRule.is_active.is_(True)),
            )
            .order_by(models.HealthPlan.name)
            .all()
        )
        return [HealthPlan(id=row.health_plan_id, name=row.name, is_active=row.is_active) for row in rows]

    def active_rules(self, health_plan_id: uuid.UUID) -> List[BillingRule]:
        rows = (
            self.db.query(models.BillingRule)
            .filter(
                models.BillingRule.health_plan_id == health_plan_id,
                models.BillingRule.is_active.is_(True),
            )
            .order_by(models.BillingRule.priority.desc(), models.BillingRule.created_at)
            .all()
        )
        return [self._rule_from_row(row) for row in rows]

    def unbilled_events(
        self,
        health_plan_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[BillableEvent]:
        already_billed = exists().where(
            models.BillingBatchItem.appointment_id == models.Appointment.appointment_id
        )
        query = self.db.query(models.Appointment).filter(
            models.Appointment.health_plan_id == health_plan_id,
            models.Appointment.status.in_(self.settings.billable_appointment_statuses),
            ~already_billed,
        )
        if start_date is not None and end_date is not None:
            range_start, range_end = _day_bounds(start_date, end_date)
            query = query.filter(
                and_(
                    models.Appointment.scheduled_at >= range_start,
                    models.Appointment.scheduled_at < range_end,
                )
            )

        rows = query.order_by(models.Appointment.scheduled_at).all()
        return [
            BillableEvent(
                id=row.appointment_id,
                health_plan_id=row.health_plan_id,
                amount=Decimal(row.amount or 0),
                event_date=row.scheduled_at.date(),
            )
            for row in rows
        ]

    def last_batch(
        self, health_plan_id: uuid.UUID, rule_id: uuid.UUID
    ) -> Optional[BillingBatch]:
        row = (
            self.db.query(models.BillingBatch)
            .filter(
                models.BillingBatch.health_plan_id == health_plan_id,
                models.BillingBatch.billing_rule_id == rule_id,
            )
            .order_by(models.BillingBatch.created_at.desc(), models.BillingBatch.period_end.desc())
            .first()
        )
        return self._batch_from_row(row) if row else None

    def pending_batches(
        self, health_plan_id: uuid.UUID, rule_id: uuid.UUID
    ) -> List[BillingBatch]:
        rows = (
            self.db.query(models.BillingBatch)
            .filter(
                models.BillingBatch.health_plan_id == health_plan_id,
                models.BillingBatch.billing_rule_id == rule_id,
                models.BillingBatch.status == BatchStatus.PENDING.value,
            )
            .order_by(models.BillingBatch.due_date)
            .all()
        )
        return [self._batch_from_row(row) for row in rows]

    def create_batch(self, batch: BillingBatch) -> BillingBatch:
        row = models.BillingBatch(
            health_plan_id=batch.health_plan_id,
            billing_rule_id=batch.billing_rule_id,
            period_start=batch.period_start,
            period_end=batch.period_end,
            amount=batch.amount,
            status=batch.status.value,
            due_date=batch.due_date,
        )
        for item in batch.items:
            row.items.append(models.BillingBatchItem(appointment_id=item.event_id, amount=item.amount))
        self.db.add(row)
        self.db.flush()
        return self._batch_from_row(row)

    @staticmethod
    def _rule_from_row(row: models.BillingRule) -> BillingRule:
        return BillingRule(
            id=row.rule_id,
            health_plan_id=row.health_plan_id,
            contract_id=row.contract_id,
            name=row.name,
            # Checked against BillingType when the rule is evaluated
            billing_type=row.billing_type,
            billing_day=row.billing_day,
            batch_threshold_amount=row.batch_threshold_amount,
            batch_threshold_count=row.batch_threshold_appointments,
            payment_term_days=row.payment_term_days,
            minimum_billing_amount=row.minimum_billing_amount,
            late_fee_percentage=row.late_fee_percentage,
            discount_percentage=row.discount_percentage,
            discount_if_paid_until_days=row.discount_if_paid_until_days,
            notify_on_generation=row.notify_on_generation,
            notify_before_due_date=row.notify_before_due_date,
            notify_days_before=row.notify_days_before,
            notify_on_late_payment=row.notify_on_late_payment,
            is_active=row.is_active,
            priority=row.priority,
        )

    @staticmethod
    def _batch_from_row(row: models.BillingBatch) -> BillingBatch:
        return BillingBatch(
            id=row.batch_id,
            health_plan_id=row.health_plan_id,
            billing_rule_id=row.billing_rule_id,
            period_start=row.period_start,
            period_end=row.period_end,
            amount=Decimal(row.amount),
            status=BatchStatus(row.status),
            due_date=row.due_date,
            created_at=row.created_at,
            items=[BillingBatchItem(event_id=i.appointment_id, amount=Decimal(i.amount)) for i in row.items],
        )
