"""
Billing value types: rules, batches, billable events and notification events.

Amounts are Decimal throughout; item amounts are copied verbatim from
their events, never recalculated.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from carenet.domain.scheduling import Weekday


class BillingType(str, Enum):
    """How a rule decides when to bill."""
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    BATCH = "batch"
    PER_APPOINTMENT = "per_appointment"


class BatchStatus(str, Enum):
    """Billing batch lifecycle status."""
    PENDING = "pending"
    PAID = "paid"
    LATE = "late"


class NotificationType(str, Enum):
    """Abstract notification events handed to the notification collaborator."""
    BATCH_CREATED = "batch_created"
    PAYMENT_DUE = "payment_due"
    PAYMENT_LATE = "payment_late"
    EARLY_PAYMENT_DISCOUNT = "early_payment_discount"


@dataclass
class HealthPlan:
    id: uuid.UUID
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class BillableEvent:
    """An appointment/procedure eligible for billing."""
    id: uuid.UUID
    health_plan_id: uuid.UUID
    amount: Decimal
    event_date: date


@dataclass
class BillingRule:
    """
    Billing configuration for a health plan (optionally scoped to a contract).

    billing_day is a day of month (1..31) for monthly rules and a
    Sunday-based day of week (0..6) for weekly rules.
    """
    id: uuid.UUID
    health_plan_id: uuid.UUID
    name: str
    billing_type: BillingType  # raw stored string until evaluated
    billing_day: Optional[int] = None
    contract_id: Optional[uuid.UUID] = None
    batch_threshold_amount: Optional[Decimal] = None
    batch_threshold_count: Optional[int] = None
    payment_term_days: int = 30
    minimum_billing_amount: Optional[Decimal] = None
    late_fee_percentage: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    discount_if_paid_until_days: Optional[int] = None
    notify_on_generation: bool = False
    notify_before_due_date: bool = False
    notify_days_before: Optional[int] = None
    notify_on_late_payment: bool = False
    is_active: bool = True
    priority: int = 0

    def should_bill_batch(self, total_amount: Decimal, event_count: int) -> bool:
        """True when a batch rule's amount or count threshold is met."""
        if self.billing_type != BillingType.BATCH:
            return False

        amount_met = bool(self.batch_threshold_amount) and total_amount >= self.batch_threshold_amount
        count_met = bool(self.batch_threshold_count) and event_count >= self.batch_threshold_count
        return amount_met or count_met

    def calculate_due_date(self, billing_date: datetime) -> date:
        """Due date from payment terms."""
        return _as_date(billing_date) + timedelta(days=self.payment_term_days or 0)

    def next_billing_date(self, now: datetime) -> date:
        """Next date this rule is expected to bill on."""
        today = _as_date(now)

        if self.billing_type == BillingType.MONTHLY and self.billing_day:
            candidate = _clamped_day(today, self.billing_day)
            if candidate < today:
                candidate = _clamped_day(today + relativedelta(months=1), self.billing_day)
            return candidate

        if self.billing_type == BillingType.WEEKLY and self.billing_day is not None:
            days_ahead = (self.billing_day - Weekday.of(today)) % 7
            return today + timedelta(days=days_ahead)

        # batch and per_appointment bill as soon as they qualify
        return today

    def discount_date(self, due_date: date) -> Optional[date]:
        """Last day that still earns the early-payment discount."""
        if not self.discount_percentage or not self.discount_if_paid_until_days:
            return None
        return due_date - timedelta(days=self.discount_if_paid_until_days)

    def calculate_discount(self, amount: Decimal, payment_date: date, due_date: date) -> Decimal:
        limit = self.discount_date(due_date)
        if limit is None or payment_date > limit:
            return Decimal("0")
        return amount * (self.discount_percentage / Decimal("100"))

    def calculate_late_fee(self, amount: Decimal, payment_date: date, due_date: date) -> Decimal:
        if not self.late_fee_percentage or payment_date <= due_date:
            return Decimal("0")
        return amount * (self.late_fee_percentage / Decimal("100"))


@dataclass(frozen=True)
class BillingBatchItem:
    event_id: uuid.UUID
    amount: Decimal


@dataclass
class BillingBatch:
    """A due-dated invoice grouping billable events of one health plan."""
    health_plan_id: uuid.UUID
    billing_rule_id: uuid.UUID
    period_start: date
    period_end: date
    amount: Decimal
    due_date: date
    status: BatchStatus = BatchStatus.PENDING
    items: List[BillingBatchItem] = field(default_factory=list)
    id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "health_plan_id": str(self.health_plan_id),
            "billing_rule_id": str(self.billing_rule_id),
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "amount": str(self.amount),
            "status": self.status.value,
            "due_date": self.due_date.isoformat(),
            "items": [{"event_id": str(i.event_id), "amount": str(i.amount)} for i in self.items],
        }


@dataclass(frozen=True)
class NotificationEvent:
    """Channel-agnostic billing notification."""
    type: NotificationType
    rule_id: uuid.UUID
    batch_id: Optional[uuid.UUID]
    health_plan_id: uuid.UUID
    amount: Decimal
    due_date: date
    days_until_due: Optional[int] = None

    def payload(self) -> Dict[str, Any]:
        data = {
            "rule_id": str(self.rule_id),
            "batch_id": str(self.batch_id) if self.batch_id else None,
            "health_plan_id": str(self.health_plan_id),
            "amount": str(self.amount),
            "due_date": self.due_date.isoformat(),
        }
        if self.days_until_due is not None:
            data["days_until_due"] = self.days_until_due
        return data


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _clamped_day(month_of: date, day: int) -> date:
    """`day` within the month of `month_of`, clamped to the month's last day."""
    last = (month_of.replace(day=1) + relativedelta(months=1, days=-1)).day
    return month_of.replace(day=min(day, last))
