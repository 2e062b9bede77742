"""
Plain value types shared by the services and repositories.

These are decoupled from the SQLAlchemy models so the engines can run
against any persistence collaborator.
"""

from .scheduling import (
    Weekday,
    ProviderKind,
    ExceptionType,
    RecurrencePattern,
    UnavailableReason,
    Provider,
    SlotConfig,
    ScheduleTemplate,
    ScheduleException,
    BookedSlot,
    Slot,
    SlotAvailability,
    DayAvailability,
)
from .billing import (
    BillingType,
    BatchStatus,
    NotificationType,
    HealthPlan,
    BillableEvent,
    BillingRule,
    BillingBatchItem,
    BillingBatch,
    NotificationEvent,
)

__all__ = [
    # Scheduling
    "Weekday",
    "ProviderKind",
    "ExceptionType",
    "RecurrencePattern",
    "UnavailableReason",
    "Provider",
    "SlotConfig",
    "ScheduleTemplate",
    "ScheduleException",
    "BookedSlot",
    "Slot",
    "SlotAvailability",
    "DayAvailability",
    # Billing
    "BillingType",
    "BatchStatus",
    "NotificationType",
    "HealthPlan",
    "BillableEvent",
    "BillingRule",
    "BillingBatchItem",
    "BillingBatch",
    "NotificationEvent",
]
