"""
Fixtures shared by the service unit tests.
"""

import pytest

from carenet.config import BillingSettings, SchedulingSettings

from fakes import FakeBillingRepository, FakeScheduleRepository, RecordingSink


@pytest.fixture
def scheduling_settings():
    return SchedulingSettings(
        default_slot_duration=30,
        default_buffer_time=0,
        default_advance_booking_days=30,
        calendar_max_span_days=90,
        clock_format="12h",
    )


@pytest.fixture
def billing_settings():
    return BillingSettings(default_payment_term_days=30, billable_appointment_statuses=("completed",))


@pytest.fixture
def schedule_repo():
    return FakeScheduleRepository()


@pytest.fixture
def billing_repo():
    return FakeBillingRepository()


@pytest.fixture
def sink():
    return RecordingSink()
