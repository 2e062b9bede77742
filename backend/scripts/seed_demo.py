#!/usr/bin/env python3
"""
DEMO SEED SCRIPT
================

Creates a small, predictable scheduling and billing dataset:
- 1 clinic open Monday to Friday, 09:00-12:00 with a 10:30 break
- 1 health plan with a monthly rule (day 15) and a per-appointment rule
- Completed appointments over the last weeks, billable by the rules

RE-RUN ANYTIME: python scripts/seed_demo.py

This script CLEARS the demo clinic and demo health plan and creates fresh data.
"""

import sys
import os
import uuid
from datetime import datetime, date, time, timedelta
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from carenet.db.postgres import get_db_session, init_db
from carenet.domain import ScheduleTemplate, Weekday
from carenet.models import (
    Appointment,
    AppointmentStatus,
    BillingBatch,
    BillingBatchItem,
    BillingRule,
    HealthPlan,
    Provider,
    ProviderSchedule,
    ScheduleException,
)
from carenet.repositories import SqlScheduleRepository
from carenet.services import AvailabilityService, ScheduleManagementService

# =============================================================================
# CONFIGURATION
# =============================================================================

DEMO_PROVIDER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000c1")
DEMO_HEALTH_PLAN_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")

WORKING_DAYS = [Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY]


# =============================================================================
# CLEANUP
# =============================================================================

def clear_demo_data(db):
    """Remove everything owned by the demo clinic and demo health plan."""
    batch_ids = [
        b.batch_id for b in db.query(BillingBatch).filter(BillingBatch.health_plan_id == DEMO_HEALTH_PLAN_ID)
    ]
    if batch_ids:
        db.query(BillingBatchItem).filter(BillingBatchItem.batch_id.in_(batch_ids)).delete(synchronize_session=False)
        db.query(BillingBatch).filter(BillingBatch.batch_id.in_(batch_ids)).delete(synchronize_session=False)
    db.query(BillingRule).filter(BillingRule.health_plan_id == DEMO_HEALTH_PLAN_ID).delete(synchronize_session=False)
    db.query(Appointment).filter(Appointment.provider_id == DEMO_PROVIDER_ID).delete(synchronize_session=False)
    db.query(ScheduleException).filter(ScheduleException.provider_id == DEMO_PROVIDER_ID).delete(synchronize_session=False)
    db.query(ProviderSchedule).filter(ProviderSchedule.provider_id == DEMO_PROVIDER_ID).delete(synchronize_session=False)
    db.query(Provider).filter(Provider.provider_id == DEMO_PROVIDER_ID).delete(synchronize_session=False)
    db.query(HealthPlan).filter(HealthPlan.health_plan_id == DEMO_HEALTH_PLAN_ID).delete(synchronize_session=False)
    db.commit()
    print("  ✓ Cleared previous demo data")


# =============================================================================
# SEEDING
# =============================================================================

def create_provider(db):
    provider = Provider(
        provider_id=DEMO_PROVIDER_ID,
        kind="clinic",
        name="Clinica Demo",
        address="Rua das Flores, 100",
    )
    db.add(provider)
    db.commit()

    service = ScheduleManagementService(SqlScheduleRepository(db))
    service.update_schedule(
        DEMO_PROVIDER_ID,
        [
            ScheduleTemplate(
                day_of_week=day,
                start_time=time(9, 0),
                end_time=time(12, 0),
                break_start=time(10, 30),
                break_end=time(11, 0),
            )
            for day in WORKING_DAYS
        ],
        slot_duration=30,
        buffer_time=0,
        max_daily_appointments=5,
        advance_booking_days=60,
    )
    print(f"  ✓ Provider {provider.name} with {len(WORKING_DAYS)} working days")
    return provider


def create_health_plan(db):
    plan = HealthPlan(health_plan_id=DEMO_HEALTH_PLAN_ID, name="Plano Demo")
    db.add(plan)
    db.add(BillingRule(
        health_plan_id=DEMO_HEALTH_PLAN_ID,
        name="Monthly invoice",
        billing_type="monthly",
        billing_day=15,
        payment_term_days=30,
        minimum_billing_amount=Decimal("100.00"),
        notify_on_generation=True,
        notify_before_due_date=True,
        notify_days_before=5,
        notify_on_late_payment=True,
        discount_percentage=Decimal("2.00"),
        discount_if_paid_until_days=10,
        priority=0,
    ))
    db.add(BillingRule(
        health_plan_id=DEMO_HEALTH_PLAN_ID,
        name="Per appointment (disabled)",
        billing_type="per_appointment",
        payment_term_days=15,
        is_active=False,
        priority=10,
    ))
    db.commit()
    print(f"  ✓ Health plan {plan.name} with 2 billing rules")
    return plan


def create_appointments(db, today):
    created = 0
    day = today - timedelta(days=28)
    while day < today:
        if Weekday.of(day) in WORKING_DAYS:
            for hour in (9, 11):
                start = datetime.combine(day, time(hour, 0))
                db.add(Appointment(
                    provider_id=DEMO_PROVIDER_ID,
                    health_plan_id=DEMO_HEALTH_PLAN_ID,
                    scheduled_at=start,
                    end_time=start + timedelta(minutes=30),
                    status=AppointmentStatus.COMPLETED.value,
                    amount=Decimal("85.00"),
                ))
                created += 1
        day += timedelta(days=1)
    db.commit()
    print(f"  ✓ {created} completed appointments")


def show_next_monday(db, today):
    days_ahead = (Weekday.MONDAY - Weekday.of(today)) % 7 or 7
    monday = today + timedelta(days=days_ahead)
    result = AvailabilityService(SqlScheduleRepository(db)).compute_available_slots(DEMO_PROVIDER_ID, monday)
    print(f"\nFree slots on {monday.isoformat()}:")
    for slot in result.slots:
        print(f"  - {slot.display}")


def main():
    print("=" * 60)
    print("CARENET - DEMO SEED")
    print("=" * 60)

    init_db()
    db = get_db_session()
    today = date.today()

    try:
        clear_demo_data(db)
        create_provider(db)
        create_health_plan(db)
        create_appointments(db, today)
        show_next_monday(db, today)
    except Exception as e:
        db.rollback()
        print(f"\n✗ Seed failed: {e}")
        raise
    finally:
        db.close()

    print("\nDone. Run `python scripts/run_billing.py --date <YYYY-MM-15>` to bill.")


if __name__ == "__main__":
    main()
