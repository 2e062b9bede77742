"""
Unit tests for the Billing Aggregator.

Tests the core logic for:
- Monthly / weekly / batch / per-appointment batch generation
- Minimum billing amount policy
- Billed-once guarantee across repeated runs
- Per-rule failure isolation
- Payment lifecycle notifications and best-effort dispatch
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from carenet.domain import (
    BatchStatus,
    BillingBatch,
    BillingBatchItem,
    BillingRule,
    BillingType,
    NotificationEvent,
    NotificationType,
    Weekday,
)
from carenet.services.billing_aggregator import BillingAggregator, BillingRunSummary, RuleFailure
from carenet.services.notifications import LoggingNotificationSink, NotificationDispatcher

from fakes import RecordingSink

BILLING_DAY = datetime(2026, 3, 15, 2, 0)


def _rule(plan, billing_type, **kwargs) -> BillingRule:
    return BillingRule(
        id=uuid.uuid4(),
        health_plan_id=plan.id,
        name=f"{billing_type.value} rule",
        billing_type=billing_type,
        **kwargs,
    )


@pytest.fixture
def plan(billing_repo):
    return billing_repo.add_health_plan()


@pytest.fixture
def aggregator(billing_repo, sink, billing_settings):
    return BillingAggregator(billing_repo, NotificationDispatcher(sink), billing_settings)


# =============================================================================
# Test periodic rules
# =============================================================================

class TestMonthlyRule:
    """Tests for monthly billing."""

    @pytest.fixture
    def rule(self, billing_repo, plan):
        rule = _rule(plan, BillingType.MONTHLY, billing_day=15)
        billing_repo.add_rule(rule)
        return rule

    def test_bills_on_billing_day(self, aggregator, billing_repo, plan, rule):
        first = billing_repo.add_event(plan.id, Decimal("200.00"), date(2026, 3, 1))
        second = billing_repo.add_event(plan.id, Decimal("300.50"), date(2026, 3, 10))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        batch = evaluation.batch
        assert len(evaluation.batches) == 1
        assert batch.period_start == date(2026, 2, 15)
        assert batch.period_end == date(2026, 3, 15)
        assert batch.amount == Decimal("500.50")
        assert batch.status == BatchStatus.PENDING
        assert batch.due_date == date(2026, 4, 14)
        assert [i.event_id for i in batch.items] == [first.id, second.id]
        assert [i.amount for i in batch.items] == [Decimal("200.00"), Decimal("300.50")]

    def test_no_batch_on_other_days(self, aggregator, billing_repo, plan, rule):
        billing_repo.add_event(plan.id, Decimal("200.00"), date(2026, 3, 1))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY + timedelta(days=1))

        assert evaluation.batches == []
        assert billing_repo.batches == []

    def test_events_outside_period_are_left(self, aggregator, billing_repo, plan, rule):
        old = billing_repo.add_event(plan.id, Decimal("100.00"), date(2026, 1, 20))
        billing_repo.add_event(plan.id, Decimal("100.00"), date(2026, 3, 1))

        aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert old.id not in billing_repo.billed_event_ids()

    def test_next_period_starts_after_last_batch(self, aggregator, billing_repo, plan, rule):
        billing_repo.add_event(plan.id, Decimal("100.00"), date(2026, 3, 1))
        aggregator.evaluate_rule(plan, rule, BILLING_DAY)
        billing_repo.add_event(plan.id, Decimal("80.00"), date(2026, 4, 2))

        evaluation = aggregator.evaluate_rule(plan, rule, datetime(2026, 4, 15, 2, 0))

        assert evaluation.batch.period_start == date(2026, 3, 16)
        assert evaluation.batch.period_end == date(2026, 4, 15)
        assert evaluation.batch.amount == Decimal("80.00")

    def test_rerun_same_day_creates_nothing(self, aggregator, billing_repo, plan, rule):
        billing_repo.add_event(plan.id, Decimal("100.00"), date(2026, 3, 1))

        aggregator.evaluate_rule(plan, rule, BILLING_DAY)
        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY + timedelta(hours=6))

        assert evaluation.batches == []
        assert len(billing_repo.batches) == 1

    def test_below_minimum_aborts_silently(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.MONTHLY, billing_day=15, minimum_billing_amount=Decimal("500"))
        billing_repo.add_rule(rule)
        billing_repo.add_event(plan.id, Decimal("250.00"), date(2026, 3, 1))
        billing_repo.add_event(plan.id, Decimal("150.00"), date(2026, 3, 2))

        summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert billing_repo.batches == []
        assert summary.failures == []

    def test_minimum_met_bills(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.MONTHLY, billing_day=15, minimum_billing_amount=Decimal("500"))
        billing_repo.add_rule(rule)
        billing_repo.add_event(plan.id, Decimal("500.00"), date(2026, 3, 1))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert evaluation.batch.amount == Decimal("500.00")

    def test_default_payment_terms_from_settings(self, billing_repo, sink, plan):
        from carenet.config import BillingSettings

        rule = _rule(plan, BillingType.MONTHLY, billing_day=15, payment_term_days=None)
        aggregator = BillingAggregator(
            billing_repo, NotificationDispatcher(sink), BillingSettings(default_payment_term_days=45)
        )
        billing_repo.add_event(plan.id, Decimal("100.00"), date(2026, 3, 1))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert evaluation.batch.due_date == date(2026, 4, 29)


class TestWeeklyRule:
    """Tests for weekly billing."""

    def test_bills_on_matching_weekday(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.WEEKLY, billing_day=Weekday.MONDAY)
        billing_repo.add_event(plan.id, Decimal("90.00"), date(2026, 2, 27))
        monday = datetime(2026, 3, 2, 6, 0)

        evaluation = aggregator.evaluate_rule(plan, rule, monday)

        assert evaluation.batch.period_start == date(2026, 2, 23)
        assert evaluation.batch.period_end == date(2026, 3, 2)
        assert evaluation.batch.amount == Decimal("90.00")

    def test_skips_other_weekdays(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.WEEKLY, billing_day=Weekday.MONDAY)
        billing_repo.add_event(plan.id, Decimal("90.00"), date(2026, 2, 27))

        evaluation = aggregator.evaluate_rule(plan, rule, datetime(2026, 3, 3, 6, 0))

        assert evaluation.batches == []


# =============================================================================
# Test threshold rules
# =============================================================================

class TestBatchRule:
    """Tests for threshold-triggered billing."""

    @pytest.fixture
    def rule(self, plan):
        return _rule(
            plan,
            BillingType.BATCH,
            batch_threshold_amount=Decimal("1000"),
            batch_threshold_count=5,
        )

    def test_waits_until_threshold(self, aggregator, billing_repo, plan, rule):
        for day in range(1, 5):
            billing_repo.add_event(plan.id, Decimal("200.00"), date(2026, 3, day))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert evaluation.batches == []

    def test_count_threshold_triggers(self, aggregator, billing_repo, plan, rule):
        for day in range(1, 6):
            billing_repo.add_event(plan.id, Decimal("10.00"), date(2026, 3, day))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert evaluation.batch.period_start == date(2026, 3, 1)
        assert evaluation.batch.period_end == date(2026, 3, 5)
        assert len(evaluation.batch.items) == 5

    def test_amount_threshold_triggers(self, aggregator, billing_repo, plan, rule):
        billing_repo.add_event(plan.id, Decimal("700.00"), date(2026, 2, 11))
        billing_repo.add_event(plan.id, Decimal("300.00"), date(2026, 3, 9))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert evaluation.batch.amount == Decimal("1000.00")
        assert evaluation.batch.period_start == date(2026, 2, 11)

    def test_no_events_no_batch(self, aggregator, plan, rule):
        assert aggregator.evaluate_rule(plan, rule, BILLING_DAY).batches == []


class TestPerAppointmentRule:
    """Tests for one batch per event."""

    def test_one_batch_per_event(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.PER_APPOINTMENT)
        events = [
            billing_repo.add_event(plan.id, Decimal("120.00"), date(2026, 3, day))
            for day in (3, 7, 12)
        ]

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert len(evaluation.batches) == 3
        for batch, event in zip(evaluation.batches, events):
            assert batch.period_start == batch.period_end == event.event_date
            assert batch.items == [BillingBatchItem(event_id=event.id, amount=event.amount)]

    def test_minimum_applies_per_event(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.PER_APPOINTMENT, minimum_billing_amount=Decimal("100"))
        billing_repo.add_event(plan.id, Decimal("50.00"), date(2026, 3, 3))
        billing_repo.add_event(plan.id, Decimal("150.00"), date(2026, 3, 4))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert [b.amount for b in evaluation.batches] == [Decimal("150.00")]


# =============================================================================
# Test evaluate_all_rules
# =============================================================================

class TestEvaluateAllRules:
    """Tests for the full billing pass."""

    def test_events_billed_at_most_once_across_runs(self, aggregator, billing_repo, plan):
        billing_repo.add_rule(_rule(plan, BillingType.PER_APPOINTMENT))
        billing_repo.add_rule(_rule(plan, BillingType.BATCH, batch_threshold_count=1))
        billing_repo.add_rule(_rule(plan, BillingType.MONTHLY, billing_day=15))
        for day in (1, 2, 3):
            billing_repo.add_event(plan.id, Decimal("75.00"), date(2026, 3, day))

        for offset in range(3):
            aggregator.evaluate_all_rules(BILLING_DAY + timedelta(hours=offset))

        billed = billing_repo.billed_event_ids()
        assert len(billed) == 3
        assert len(set(billed)) == len(billed)

    def test_higher_priority_rule_runs_first(self, aggregator, billing_repo, plan):
        monthly = _rule(plan, BillingType.MONTHLY, billing_day=15, minimum_billing_amount=Decimal("1"))
        per_event = _rule(plan, BillingType.PER_APPOINTMENT, priority=10)
        billing_repo.add_rule(monthly)
        billing_repo.add_rule(per_event)
        billing_repo.add_event(plan.id, Decimal("75.00"), date(2026, 3, 1))

        summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert summary.batches_created == 1
        assert billing_repo.batches[0].billing_rule_id == per_event.id

    def test_failing_rule_does_not_stop_others(self, aggregator, billing_repo, caplog):
        broken_plan = billing_repo.add_health_plan("Broken")
        healthy_plan = billing_repo.add_health_plan("Healthy")
        broken = _rule(broken_plan, BillingType.PER_APPOINTMENT)
        healthy = _rule(healthy_plan, BillingType.PER_APPOINTMENT)
        billing_repo.add_rule(broken)
        billing_repo.add_rule(healthy)
        billing_repo.fail_create_for.add(broken.id)
        billing_repo.add_event(broken_plan.id, Decimal("10.00"), date(2026, 3, 1))
        billing_repo.add_event(healthy_plan.id, Decimal("20.00"), date(2026, 3, 1))

        with caplog.at_level(logging.ERROR, logger="service.BillingAggregator"):
            summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert summary.rules_evaluated == 2
        assert summary.batches_created == 1
        assert [f.rule_id for f in summary.failures] == [broken.id]
        assert summary.failures[0].error == "database unavailable"
        assert billing_repo.rollbacks == 1
        assert [b.billing_rule_id for b in billing_repo.batches] == [healthy.id]
        assert str(broken.id) in caplog.text

    def test_unknown_billing_type_fails_only_its_rule(self, aggregator, billing_repo):
        odd_plan = billing_repo.add_health_plan("Odd")
        healthy_plan = billing_repo.add_health_plan("Healthy")
        odd = _rule(odd_plan, "quarterly")
        healthy = _rule(healthy_plan, BillingType.PER_APPOINTMENT)
        billing_repo.add_rule(odd)
        billing_repo.add_rule(healthy)
        billing_repo.add_event(healthy_plan.id, Decimal("20.00"), date(2026, 3, 1))

        summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert summary.rules_evaluated == 2
        assert summary.batches_created == 1
        assert [f.rule_id for f in summary.failures] == [odd.id]
        assert "quarterly" in summary.failures[0].error

    def test_rule_loading_failure_skips_only_that_plan(self, aggregator, billing_repo, caplog):
        broken_plan = billing_repo.add_health_plan("Broken")
        healthy_plan = billing_repo.add_health_plan("Healthy")
        billing_repo.add_rule(_rule(broken_plan, BillingType.PER_APPOINTMENT))
        healthy = _rule(healthy_plan, BillingType.PER_APPOINTMENT)
        billing_repo.add_rule(healthy)
        billing_repo.add_event(healthy_plan.id, Decimal("20.00"), date(2026, 3, 1))

        original_rules = billing_repo.active_rules

        def rules_or_fail(health_plan_id):
            if health_plan_id == broken_plan.id:
                raise RuntimeError("bad rule row")
            return original_rules(health_plan_id)

        billing_repo.active_rules = rules_or_fail

        with caplog.at_level(logging.ERROR, logger="service.BillingAggregator"):
            summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert summary.rules_evaluated == 1
        assert summary.batches_created == 1
        assert len(summary.failures) == 1
        failure = summary.failures[0]
        assert failure.rule_id is None
        assert failure.health_plan_id == broken_plan.id
        assert failure.error == "bad rule row"
        assert summary.to_dict()["failures"][0]["rule_id"] is None
        assert [b.billing_rule_id for b in billing_repo.batches] == [healthy.id]
        assert str(broken_plan.id) in caplog.text

    def test_failed_rule_leaves_no_partial_batches(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.PER_APPOINTMENT)
        billing_repo.add_rule(rule)
        billing_repo.add_event(plan.id, Decimal("10.00"), date(2026, 3, 1))
        billing_repo.add_event(plan.id, Decimal("20.00"), date(2026, 3, 2))

        original_create = billing_repo.create_batch
        calls = []

        def create_then_fail(batch):
            calls.append(batch)
            if len(calls) == 2:
                raise RuntimeError("connection reset")
            return original_create(batch)

        billing_repo.create_batch = create_then_fail

        with pytest.raises(RuntimeError):
            aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert billing_repo.batches == []

    def test_inactive_rules_are_skipped(self, aggregator, billing_repo, plan):
        billing_repo.add_rule(_rule(plan, BillingType.PER_APPOINTMENT, is_active=False))
        billing_repo.add_event(plan.id, Decimal("10.00"), date(2026, 3, 1))

        summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert summary.rules_evaluated == 0
        assert billing_repo.batches == []

    def test_summary_to_dict(self):
        rule_id, plan_id = uuid.uuid4(), uuid.uuid4()
        summary = BillingRunSummary(started_at=BILLING_DAY, rules_evaluated=2, batches_created=1)
        summary.failures.append(RuleFailure(rule_id=rule_id, health_plan_id=plan_id, error="boom"))

        data = summary.to_dict()

        assert data["started_at"] == "2026-03-15T02:00:00"
        assert data["failures"] == [
            {"rule_id": str(rule_id), "health_plan_id": str(plan_id), "error": "boom"}
        ]


# =============================================================================
# Test notifications
# =============================================================================

def _pending_batch(rule, due_date, amount=Decimal("500.00")) -> BillingBatch:
    return BillingBatch(
        id=uuid.uuid4(),
        health_plan_id=rule.health_plan_id,
        billing_rule_id=rule.id,
        period_start=date(2026, 2, 1),
        period_end=date(2026, 2, 28),
        amount=amount,
        due_date=due_date,
    )


class TestNotifications:
    """Tests for batch and payment lifecycle notifications."""

    def test_batch_created_notification(self, aggregator, billing_repo, plan, sink):
        rule = _rule(plan, BillingType.PER_APPOINTMENT, notify_on_generation=True)
        billing_repo.add_event(plan.id, Decimal("60.00"), date(2026, 3, 1))

        evaluation = aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert [e.type for e in sink.sent] == [NotificationType.BATCH_CREATED]
        event = sink.sent[0]
        assert event.batch_id == evaluation.batch.id
        assert event.payload() == {
            "rule_id": str(rule.id),
            "batch_id": str(evaluation.batch.id),
            "health_plan_id": str(plan.id),
            "amount": "60.00",
            "due_date": "2026-04-14",
        }

    def test_no_notification_without_flag(self, aggregator, billing_repo, plan, sink):
        rule = _rule(plan, BillingType.PER_APPOINTMENT)
        billing_repo.add_event(plan.id, Decimal("60.00"), date(2026, 3, 1))

        aggregator.evaluate_rule(plan, rule, BILLING_DAY)

        assert sink.sent == []

    def test_payment_due_exact_day(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.BATCH, notify_before_due_date=True, notify_days_before=3)
        billing_repo.batches.append(_pending_batch(rule, date(2026, 3, 18)))
        billing_repo.batches.append(_pending_batch(rule, date(2026, 3, 19)))

        events = aggregator.scan_payment_notifications(rule, BILLING_DAY)

        assert [(e.type, e.due_date, e.days_until_due) for e in events] == [
            (NotificationType.PAYMENT_DUE, date(2026, 3, 18), 3),
        ]
        assert events[0].payload()["days_until_due"] == 3

    def test_payment_late(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.BATCH, notify_on_late_payment=True)
        billing_repo.batches.append(_pending_batch(rule, date(2026, 3, 14)))
        billing_repo.batches.append(_pending_batch(rule, date(2026, 3, 15)))

        events = aggregator.scan_payment_notifications(rule, BILLING_DAY)

        assert [(e.type, e.due_date) for e in events] == [
            (NotificationType.PAYMENT_LATE, date(2026, 3, 14)),
        ]

    def test_paid_batches_are_not_scanned(self, aggregator, billing_repo, plan):
        rule = _rule(plan, BillingType.BATCH, notify_on_late_payment=True)
        paid = _pending_batch(rule, date(2026, 3, 1))
        paid.status = BatchStatus.PAID
        billing_repo.batches.append(paid)

        assert aggregator.scan_payment_notifications(rule, BILLING_DAY) == []

    def test_early_payment_discount_exact_day(self, aggregator, billing_repo, plan):
        rule = _rule(
            plan,
            BillingType.BATCH,
            discount_percentage=Decimal("5"),
            discount_if_paid_until_days=10,
        )
        billing_repo.batches.append(_pending_batch(rule, date(2026, 3, 25)))
        billing_repo.batches.append(_pending_batch(rule, date(2026, 3, 26)))

        events = aggregator.scan_payment_notifications(rule, BILLING_DAY)

        assert [(e.type, e.due_date) for e in events] == [
            (NotificationType.EARLY_PAYMENT_DISCOUNT, date(2026, 3, 25)),
        ]

    def test_scan_runs_during_evaluation(self, aggregator, billing_repo, plan, sink):
        rule = _rule(plan, BillingType.BATCH, batch_threshold_count=100, notify_on_late_payment=True)
        billing_repo.add_rule(rule)
        billing_repo.batches.append(_pending_batch(rule, date(2026, 3, 1)))

        summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert summary.notifications_sent == 1
        assert [e.type for e in sink.sent] == [NotificationType.PAYMENT_LATE]

    def test_dispatch_failure_keeps_batch(self, billing_repo, plan, billing_settings, caplog):
        sink = RecordingSink(fail_types={NotificationType.BATCH_CREATED})
        aggregator = BillingAggregator(billing_repo, NotificationDispatcher(sink), billing_settings)
        rule = _rule(plan, BillingType.PER_APPOINTMENT, notify_on_generation=True)
        billing_repo.add_rule(rule)
        billing_repo.add_event(plan.id, Decimal("60.00"), date(2026, 3, 1))

        with caplog.at_level(logging.WARNING, logger="service.NotificationDispatcher"):
            summary = aggregator.evaluate_all_rules(BILLING_DAY)

        assert summary.failures == []
        assert summary.batches_created == 1
        assert summary.notifications_sent == 0
        assert len(billing_repo.batches) == 1
        assert billing_repo.rollbacks == 0
        assert "mail server down" in caplog.text


class TestNotificationDispatcher:
    """Tests for best-effort dispatch."""

    def _event(self, kind=NotificationType.PAYMENT_DUE) -> NotificationEvent:
        return NotificationEvent(
            type=kind,
            rule_id=uuid.uuid4(),
            batch_id=uuid.uuid4(),
            health_plan_id=uuid.uuid4(),
            amount=Decimal("10.00"),
            due_date=date(2026, 3, 20),
            days_until_due=5,
        )

    def test_returns_failed_events(self):
        sink = MagicMock()
        sink.send.side_effect = [None, TimeoutError("smtp timeout"), None]
        dispatcher = NotificationDispatcher(sink)
        events = [self._event(), self._event(), self._event()]

        failed = dispatcher.dispatch_all(events)

        assert failed == [events[1]]
        assert sink.send.call_count == 3

    def test_logging_sink(self, caplog):
        dispatcher = NotificationDispatcher(LoggingNotificationSink())

        with caplog.at_level(logging.INFO, logger="notifications.log"):
            assert dispatcher.dispatch(self._event(NotificationType.PAYMENT_LATE)) is True

        assert "payment_late" in caplog.text
