"""
In-memory collaborators for service unit tests.

The fakes implement the repository interfaces with plain lists and
dicts. run_in_transaction snapshots state and restores it when the
unit of work raises, so rollback behaviour can be asserted.
"""

import copy
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from carenet.domain import (
    BatchStatus,
    BillableEvent,
    BillingBatch,
    BookedSlot,
    HealthPlan,
    Provider,
    ProviderKind,
    ScheduleException,
    ScheduleTemplate,
    SlotConfig,
)
from carenet.repositories.base import BillingRepository, ScheduleRepository
from carenet.services.notifications import NotificationSink


class FakeScheduleRepository(ScheduleRepository):
    """Schedule repository backed by in-memory state."""

    def __init__(self):
        self.providers: Dict[uuid.UUID, Provider] = {}
        self.slot_configs: Dict[uuid.UUID, SlotConfig] = {}
        self.templates: Dict[uuid.UUID, List[ScheduleTemplate]] = {}
        self.exceptions: List[ScheduleException] = []
        self.bookings: Dict[uuid.UUID, List[BookedSlot]] = {}
        self.commits = 0

    def add_provider(self, kind: ProviderKind = ProviderKind.PROFESSIONAL, name: str = "Dr. Silva") -> Provider:
        provider = Provider(id=uuid.uuid4(), kind=kind, name=name)
        self.providers[provider.id] = provider
        return provider

    def run_in_transaction(self, fn):
        snapshot = (
            copy.deepcopy(self.templates),
            copy.deepcopy(self.slot_configs),
            list(self.exceptions),
        )
        try:
            result = fn()
        except Exception:
            self.templates, self.slot_configs, self.exceptions = snapshot
            raise
        self.commits += 1
        return result

    def get_provider(self, provider_id):
        return self.providers.get(provider_id)

    def get_slot_config(self, provider_id):
        return self.slot_configs.get(provider_id)

    def get_templates(self, provider_id):
        return list(self.templates.get(provider_id, []))

    def get_exceptions(self, provider_id, start_date, end_date):
        return [
            e for e in self.exceptions
            if e.provider_id == provider_id and e.start_date <= end_date and e.end_date >= start_date
        ]

    def get_booked_slots(self, provider_id, start_date, end_date):
        return [
            b for b in self.bookings.get(provider_id, [])
            if start_date <= b.day <= end_date
        ]

    def has_active_bookings(self, provider_id, start_date, end_date):
        return bool(self.get_booked_slots(provider_id, start_date, end_date))

    def replace_schedule(self, provider_id, templates, slot_config):
        self.templates[provider_id] = list(templates)
        self.slot_configs[provider_id] = slot_config

    def add_exception(self, exception):
        saved = copy.copy(exception)
        saved.id = uuid.uuid4()
        self.exceptions.append(saved)
        return saved

    def get_exception(self, provider_id, exception_id):
        for e in self.exceptions:
            if e.provider_id == provider_id and e.id == exception_id:
                return e
        return None

    def delete_exception(self, provider_id, exception_id):
        before = len(self.exceptions)
        self.exceptions = [
            e for e in self.exceptions
            if not (e.provider_id == provider_id and exception_id in (e.id, e.parent_exception_id))
        ]
        return before - len(self.exceptions)


class FakeBillingRepository(BillingRepository):
    """Billing repository backed by in-memory state."""

    def __init__(self):
        self.health_plans: List[HealthPlan] = []
        self.rules: Dict[uuid.UUID, list] = {}
        self.events: List[BillableEvent] = []
        self.batches: List[BillingBatch] = []
        self.fail_create_for: set = set()
        self.commits = 0
        self.rollbacks = 0

    def add_health_plan(self, name: str = "Unimed") -> HealthPlan:
        plan = HealthPlan(id=uuid.uuid4(), name=name)
        self.health_plans.append(plan)
        self.rules[plan.id] = []
        return plan

    def add_rule(self, rule) -> None:
        self.rules[rule.health_plan_id].append(rule)

    def add_event(self, health_plan_id, amount, event_date) -> BillableEvent:
        event = BillableEvent(id=uuid.uuid4(), health_plan_id=health_plan_id, amount=amount, event_date=event_date)
        self.events.append(event)
        return event

    def billed_event_ids(self) -> List[uuid.UUID]:
        return [item.event_id for batch in self.batches for item in batch.items]

    def run_in_transaction(self, fn):
        snapshot = list(self.batches)
        try:
            result = fn()
        except Exception:
            self.batches = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1
        return result

    def active_health_plans(self):
        return [p for p in self.health_plans if p.is_active and any(r.is_active for r in self.rules[p.id])]

    def active_rules(self, health_plan_id):
        rules = [r for r in self.rules.get(health_plan_id, []) if r.is_active]
        return sorted(rules, key=lambda r: r.priority, reverse=True)

    def unbilled_events(self, health_plan_id, start_date=None, end_date=None):
        billed = set(self.billed_event_ids())
        events = [e for e in self.events if e.health_plan_id == health_plan_id and e.id not in billed]
        if start_date is not None and end_date is not None:
            events = [e for e in events if start_date <= e.event_date <= end_date]
        return sorted(events, key=lambda e: e.event_date)

    def last_batch(self, health_plan_id, rule_id):
        batches = [b for b in self.batches if b.health_plan_id == health_plan_id and b.billing_rule_id == rule_id]
        return batches[-1] if batches else None

    def pending_batches(self, health_plan_id, rule_id):
        return [
            b for b in self.batches
            if b.health_plan_id == health_plan_id
            and b.billing_rule_id == rule_id
            and b.status == BatchStatus.PENDING
        ]

    def create_batch(self, batch):
        if batch.billing_rule_id in self.fail_create_for:
            raise RuntimeError("database unavailable")
        billed = set(self.billed_event_ids())
        for item in batch.items:
            if item.event_id in billed:
                raise RuntimeError(f"event {item.event_id} already billed")
        saved = copy.copy(batch)
        saved.id = uuid.uuid4()
        saved.created_at = datetime.utcnow()
        self.batches.append(saved)
        return saved


class RecordingSink(NotificationSink):
    """Collects events; optionally fails for given notification types."""

    def __init__(self, fail_types: Optional[set] = None):
        self.sent = []
        self.fail_types = fail_types or set()

    def send(self, event):
        if event.type in self.fail_types:
            raise ConnectionError("mail server down")
        self.sent.append(event)

