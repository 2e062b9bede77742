"""
BillingAggregator: turns unbilled events into billing batches.

Per rule type:
- monthly:         on now.day == billing_day, bills (last period_end + 1 day | now - 1 month) .. now
- weekly:          on weekday(now) == billing_day (Sunday=0), same with a 1 week fallback
- batch:           when the unbilled amount or count reaches the rule's thresholds
- per_appointment: one batch per unbilled event

Each rule runs in its own transaction: the batch header and all of its
items commit together. An event is billed at most once because the
candidate set is always the repository's unbilled_events() anti-join;
under concurrent runs the unique appointment_id on batch items is what
actually rejects a second assignment.

After batch generation the rule's pending batches are scanned for
payment notifications. Those triggers are exact day matches, so the
scan must run at least once a day.
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from carenet.config import BillingSettings
from carenet.domain import (
    BatchStatus,
    BillableEvent,
    BillingBatch,
    BillingBatchItem,
    BillingRule,
    BillingType,
    HealthPlan,
    NotificationEvent,
    NotificationType,
    Weekday,
)
from carenet.repositories.base import BillingRepository
from carenet.services.notifications import NotificationDispatcher


@dataclass
class RuleEvaluation:
    """Outcome of evaluating one rule."""
    rule_id: uuid.UUID
    health_plan_id: uuid.UUID
    batches: List[BillingBatch] = field(default_factory=list)
    notifications: List[NotificationEvent] = field(default_factory=list)

    @property
    def batch(self) -> Optional[BillingBatch]:
        """The first batch created, if any."""
        return self.batches[0] if self.batches else None


@dataclass
class RuleFailure:
    """A rule that raised, or a plan whose rules could not be loaded (rule_id None)."""
    rule_id: Optional[uuid.UUID]
    health_plan_id: uuid.UUID
    error: str


@dataclass
class BillingRunSummary:
    """Totals for one evaluate_all_rules pass."""
    started_at: datetime
    rules_evaluated: int = 0
    batches_created: int = 0
    notifications_sent: int = 0
    failures: List[RuleFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "rules_evaluated": self.rules_evaluated,
            "batches_created": self.batches_created,
            "notifications_sent": self.notifications_sent,
            "failures": [
                {"rule_id": str(f.rule_id) if f.rule_id else None, "health_plan_id": str(f.health_plan_id), "error": f.error}
                for f in self.failures
            ],
        }


class BillingAggregator:
    """
    Evaluates health plan billing rules.

    Usage:
        aggregator = BillingAggregator(repository, NotificationDispatcher(sink))
        summary = aggregator.evaluate_all_rules(datetime.now())
    """

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[BillingSettings] = None,
    ):
        self._repository = repository
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.settings = settings or BillingSettings.from_config()
        self.logger = logging.getLogger("service.BillingAggregator")

    @property
    def repository(self) -> BillingRepository:
        if self._repository is None:
            from carenet.repositories.sql import SqlBillingRepository
            self._repository = SqlBillingRepository(settings=self.settings)
        return self._repository

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def evaluate_all_rules(self, now: Optional[datetime] = None) -> BillingRunSummary:
        """
        Evaluate every active rule of every health plan.

        A failing rule is logged and skipped; it never stops the run.
        """
        now = now or datetime.now()
        summary = BillingRunSummary(started_at=now)

        for health_plan in self.repository.active_health_plans():
            try:
                rules = self.repository.run_in_transaction(
                    lambda: self.repository.active_rules(health_plan.id)
                )
            except Exception as e:
                self.logger.exception(f"Error loading rules for health plan {health_plan.id}: {e}")
                summary.failures.append(
                    RuleFailure(rule_id=None, health_plan_id=health_plan.id, error=str(e))
                )
                continue

            for rule in rules:
                summary.rules_evaluated += 1
                try:
                    evaluation = self.evaluate_rule(health_plan, rule, now)
                except Exception as e:
                    self.logger.exception(
                        f"Error processing rule {rule.id} for health plan {health_plan.id}: {e}"
                    )
                    summary.failures.append(
                        RuleFailure(rule_id=rule.id, health_plan_id=health_plan.id, error=str(e))
                    )
                    continue

                summary.batches_created += len(evaluation.batches)
                summary.notifications_sent += len(evaluation.notifications)

        self.logger.info(
            f"Billing run finished: {summary.rules_evaluated} rules, "
            f"{summary.batches_created} batches, {len(summary.failures)} failures"
        )
        return summary

    def evaluate_rule(
        self, health_plan: HealthPlan, rule: BillingRule, now: datetime
    ) -> RuleEvaluation:
        """
        Evaluate one rule inside its own transaction.

        Errors roll the transaction back and propagate. Notifications are
        dispatched only after the commit.
        """
        evaluation = RuleEvaluation(rule_id=rule.id, health_plan_id=health_plan.id)

        def _work() -> None:
            evaluation.batches.extend(self._generate_batches(health_plan, rule, now))
            evaluation.notifications.extend(
                self._batch_created_events(rule, evaluation.batches)
            )
            evaluation.notifications.extend(self.scan_payment_notifications(rule, now))

        self.repository.run_in_transaction(_work)

        failed = self.dispatcher.dispatch_all(evaluation.notifications)
        if failed:
            evaluation.notifications = [n for n in evaluation.notifications if n not in failed]
        return evaluation

    # -------------------------------------------------------------------------
    # Batch generation
    # -------------------------------------------------------------------------

    def _generate_batches(
        self, health_plan: HealthPlan, rule: BillingRule, now: datetime
    ) -> List[BillingBatch]:
        handlers = {
            BillingType.MONTHLY: self._monthly,
            BillingType.WEEKLY: self._weekly,
            BillingType.BATCH: self._batch,
            BillingType.PER_APPOINTMENT: self._per_appointment,
        }
        handler = handlers[BillingType(rule.billing_type)]
        return handler(health_plan, rule, now)

    def _monthly(self, health_plan: HealthPlan, rule: BillingRule, now: datetime) -> List[BillingBatch]:
        if now.day != rule.billing_day:
            return []
        fallback = now.date() - relativedelta(months=1)
        return self._periodic(health_plan, rule, now, fallback)

    def _weekly(self, health_plan: HealthPlan, rule: BillingRule, now: datetime) -> List[BillingBatch]:
        if rule.billing_day is None or Weekday.of(now.date()) != rule.billing_day:
            return []
        fallback = now.date() - timedelta(weeks=1)
        return self._periodic(health_plan, rule, now, fallback)

    def _periodic(
        self, health_plan: HealthPlan, rule: BillingRule, now: datetime, fallback_start: date
    ) -> List[BillingBatch]:
        last = self.repository.last_batch(health_plan.id, rule.id)
        period_start = last.period_end + timedelta(days=1) if last else fallback_start
        period_end = now.date()

        if period_start > period_end:
            self.logger.info(f"Rule {rule.id} already billed through {last.period_end.isoformat()}")
            return []

        events = self.repository.unbilled_events(health_plan.id, period_start, period_end)
        batch = self._materialize(health_plan, rule, now, period_start, period_end, events)
        return [batch] if batch else []

    def _batch(self, health_plan: HealthPlan, rule: BillingRule, now: datetime) -> List[BillingBatch]:
        events = self.repository.unbilled_events(health_plan.id)
        total = sum((e.amount for e in events), Decimal("0"))
        if not events or not rule.should_bill_batch(total, len(events)):
            return []

        period_start = min(e.event_date for e in events)
        period_end = max(e.event_date for e in events)
        batch = self._materialize(health_plan, rule, now, period_start, period_end, events)
        return [batch] if batch else []

    def _per_appointment(
        self, health_plan: HealthPlan, rule: BillingRule, now: datetime
    ) -> List[BillingBatch]:
        batches = []
        for event in self.repository.unbilled_events(health_plan.id):
            batch = self._materialize(health_plan, rule, now, event.event_date, event.event_date, [event])
            if batch:
                batches.append(batch)
        return batches

    def _materialize(
        self,
        health_plan: HealthPlan,
        rule: BillingRule,
        now: datetime,
        period_start: date,
        period_end: date,
        events: List[BillableEvent],
    ) -> Optional[BillingBatch]:
        """Create a batch for the events unless it falls below the rule's minimum."""
        total = sum((e.amount for e in events), Decimal("0"))

        if rule.minimum_billing_amount and total < rule.minimum_billing_amount:
            self.logger.info(
                f"Rule {rule.id}: {total} below minimum {rule.minimum_billing_amount}, no batch"
            )
            return None

        batch = BillingBatch(
            health_plan_id=health_plan.id,
            billing_rule_id=rule.id,
            period_start=period_start,
            period_end=period_end,
            amount=total,
            status=BatchStatus.PENDING,
            due_date=self._due_date(rule, now),
            items=[BillingBatchItem(event_id=e.id, amount=e.amount) for e in events],
        )
        batch = self.repository.create_batch(batch)
        self.logger.info(
            f"Created batch {batch.id} for health plan {health_plan.id}: "
            f"{len(batch.items)} items, {total}"
        )
        return batch

    def _due_date(self, rule: BillingRule, now: datetime) -> date:
        if rule.payment_term_days is None:
            return now.date() + timedelta(days=self.settings.default_payment_term_days)
        return rule.calculate_due_date(now)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    @staticmethod
    def _batch_created_events(
        rule: BillingRule, batches: List[BillingBatch]
    ) -> List[NotificationEvent]:
        if not rule.notify_on_generation:
            return []
        return [
            NotificationEvent(
                type=NotificationType.BATCH_CREATED,
                rule_id=rule.id,
                batch_id=batch.id,
                health_plan_id=batch.health_plan_id,
                amount=batch.amount,
                due_date=batch.due_date,
            )
            for batch in batches
        ]

    def scan_payment_notifications(
        self, rule: BillingRule, now: datetime
    ) -> List[NotificationEvent]:
        """
        Payment lifecycle events for the rule's pending batches.

        - payment_due: days until due equals notify_days_before exactly
        - payment_late: due date is before today
        - early_payment_discount: today is exactly the last discount day
        """
        today = now.date()
        events: List[NotificationEvent] = []

        for batch in self.repository.pending_batches(rule.health_plan_id, rule.id):
            days_until_due = (batch.due_date - today).days

            def _event(kind: NotificationType, days: Optional[int] = None) -> NotificationEvent:
                return NotificationEvent(
                    type=kind,
                    rule_id=rule.id,
                    batch_id=batch.id,
                    health_plan_id=batch.health_plan_id,
                    amount=batch.amount,
                    due_date=batch.due_date,
                    days_until_due=days,
                )

            if (
                rule.notify_before_due_date
                and rule.notify_days_before is not None
                and days_until_due == rule.notify_days_before
            ):
                events.append(_event(NotificationType.PAYMENT_DUE, days_until_due))

            if rule.notify_on_late_payment and batch.due_date < today:
                events.append(_event(NotificationType.PAYMENT_LATE))

            if rule.discount_date(batch.due_date) == today:
                events.append(_event(NotificationType.EARLY_PAYMENT_DISCOUNT, days_until_due))

        return events
