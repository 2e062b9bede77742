"""
Persistence collaborator interfaces.

The services only talk to these; the SQLAlchemy implementation lives in
repositories/sql.py. Every write path goes through run_in_transaction so
a batch header and its items commit or roll back together.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, List, Optional, TypeVar

from carenet.domain import (
    BillableEvent,
    BillingBatch,
    BillingRule,
    BookedSlot,
    HealthPlan,
    Provider,
    ScheduleException,
    ScheduleTemplate,
    SlotConfig,
)

T = TypeVar("T")


class TransactionalRepository(ABC):
    """Anything that can run a unit of work atomically."""

    @abstractmethod
    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        """Run fn; commit if it returns, roll back and re-raise if it raises."""


class ScheduleRepository(TransactionalRepository):
    """Reads and writes provider schedules, exceptions and bookings."""

    @abstractmethod
    def get_provider(self, provider_id: uuid.UUID) -> Optional[Provider]:
        ...

    @abstractmethod
    def get_slot_config(self, provider_id: uuid.UUID) -> Optional[SlotConfig]:
        ...

    @abstractmethod
    def get_templates(self, provider_id: uuid.UUID) -> List[ScheduleTemplate]:
        ...

    @abstractmethod
    def get_exceptions(
        self, provider_id: uuid.UUID, start_date: date, end_date: date
    ) -> List[ScheduleException]:
        """Exceptions whose [start_date, end_date] intersects the given range."""

    @abstractmethod
    def get_booked_slots(
        self, provider_id: uuid.UUID, start_date: date, end_date: date
    ) -> List[BookedSlot]:
        """Non-cancelled bookings in the inclusive date range."""

    @abstractmethod
    def has_active_bookings(
        self, provider_id: uuid.UUID, start_date: date, end_date: date
    ) -> bool:
        ...

    @abstractmethod
    def replace_schedule(
        self,
        provider_id: uuid.UUID,
        templates: List[ScheduleTemplate],
        slot_config: SlotConfig,
    ) -> None:
        """Replace all templates and the slot config of a provider."""

    @abstractmethod
    def add_exception(self, exception: ScheduleException) -> ScheduleException:
        """Persist an exception and return it with its id set."""

    @abstractmethod
    def get_exception(
        self, provider_id: uuid.UUID, exception_id: uuid.UUID
    ) -> Optional[ScheduleException]:
        ...

    @abstractmethod
    def delete_exception(self, provider_id: uuid.UUID, exception_id: uuid.UUID) -> int:
        """Delete an exception and its generated children; returns rows removed."""


class BillingRepository(TransactionalRepository):
    """Reads rules and events, writes batches."""

    @abstractmethod
    def active_health_plans(self) -> List[HealthPlan]:
        """Health plans that have at least one active billing rule."""

    @abstractmethod
    def active_rules(self, health_plan_id: uuid.UUID) -> List[BillingRule]:
        """Active rules of a health plan, highest priority first."""

    @abstractmethod
    def unbilled_events(
        self,
        health_plan_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[BillableEvent]:
        """Events not yet attached to any batch item, optionally within a date range."""

    @abstractmethod
    def last_batch(
        self, health_plan_id: uuid.UUID, rule_id: uuid.UUID
    ) -> Optional[BillingBatch]:
        """Most recently created batch of a rule."""

    @abstractmethod
    def pending_batches(
        self, health_plan_id: uuid.UUID, rule_id: uuid.UUID
    ) -> List[BillingBatch]:
        ...

    @abstractmethod
    def create_batch(self, batch: BillingBatch) -> BillingBatch:
        """Persist a batch header with its items; returns it with ids set."""
