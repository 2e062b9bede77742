"""
Persistence collaborators for the scheduling and billing services.
"""

from .base import TransactionalRepository, ScheduleRepository, BillingRepository
from .sql import SqlScheduleRepository, SqlBillingRepository

__all__ = [
    "TransactionalRepository",
    "ScheduleRepository",
    "BillingRepository",
    "SqlScheduleRepository",
    "SqlBillingRepository",
]
