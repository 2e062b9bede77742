"""
SQLAlchemy models for carenet.

These are the authoritative tables behind the SQL repositories.
"""

from .scheduling import Provider, ProviderSchedule, ScheduleException, Appointment, AppointmentStatus
from .billing import HealthPlan, BillingRule, BillingBatch, BillingBatchItem
from .notification_log import NotificationLog

__all__ = [
    # Scheduling
    "Provider",
    "ProviderSchedule",
    "ScheduleException",
    "Appointment",
    "AppointmentStatus",
    # Billing
    "HealthPlan",
    "BillingRule",
    "BillingBatch",
    "BillingBatchItem",
    # Notifications
    "NotificationLog",
]
