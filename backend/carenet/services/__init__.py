"""
Services for carenet.

- AvailabilityService: free slots and availability calendars
- ScheduleManagementService: template replacement and schedule exceptions
- BillingAggregator: rule-driven billing batch generation
- NotificationDispatcher: best-effort billing notifications
"""

from .availability import AvailabilityService
from .schedule_management import ScheduleManagementService, ExceptionRequest
from .billing_aggregator import BillingAggregator, BillingRunSummary, RuleEvaluation
from .notifications import (
    NotificationDispatcher,
    NotificationSink,
    LoggingNotificationSink,
    NotificationLogSink,
)

__all__ = [
    "AvailabilityService",
    "ScheduleManagementService",
    "ExceptionRequest",
    "BillingAggregator",
    "BillingRunSummary",
    "RuleEvaluation",
    "NotificationDispatcher",
    "NotificationSink",
    "LoggingNotificationSink",
    "NotificationLogSink",
]
