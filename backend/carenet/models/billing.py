"""
Health plan billing models.

These tables support:
1. Health plans and their billing rules
2. Billing batches (invoices) and their items
3. The "billed once" invariant: an appointment appears in at most one
   batch item, enforced by a unique constraint on appointment_id
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Integer, Date, Boolean, Text, Numeric, Uuid,
)
from sqlalchemy.orm import relationship

from carenet.db.postgres import Base


class HealthPlan(Base):
    """Health plan (payer) billed for appointments."""

    __tablename__ = "health_plan"

    health_plan_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    billing_rules = relationship("BillingRule", back_populates="health_plan")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "health_plan_id": str(self.health_plan_id),
            "name": self.name,
            "is_active": self.is_active,
        }


class BillingRule(Base):
    """
    Billing configuration for a health plan, optionally per contract.

    billing_day: day of month for monthly rules, day of week
    (0=Sunday .. 6=Saturday) for weekly rules.
    """

    __tablename__ = "billing_rule"

    rule_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    health_plan_id = Column(
        Uuid,
        ForeignKey("health_plan.health_plan_id"),
        nullable=False,
        index=True,
    )
    contract_id = Column(Uuid, nullable=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    billing_type = Column(String(20), nullable=False)  # monthly, weekly, batch, per_appointment
    billing_day = Column(Integer, nullable=True)

    # Batch thresholds
    batch_threshold_amount = Column(Numeric(12, 2), nullable=True)
    batch_threshold_appointments = Column(Integer, nullable=True)

    # Payment terms
    payment_term_days = Column(Integer, nullable=True)
    minimum_billing_amount = Column(Numeric(12, 2), nullable=True)
    late_fee_percentage = Column(Numeric(5, 2), nullable=True)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    discount_if_paid_until_days = Column(Integer, nullable=True)

    # Notification flags
    notify_on_generation = Column(Boolean, default=False, nullable=False)
    notify_before_due_date = Column(Boolean, default=False, nullable=False)
    notify_days_before = Column(Integer, nullable=True)
    notify_on_late_payment = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    health_plan = relationship("HealthPlan", back_populates="billing_rules")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "rule_id": str(self.rule_id),
            "health_plan_id": str(self.health_plan_id),
            "name": self.name,
            "billing_type": self.billing_type,
            "billing_day": self.billing_day,
            "payment_term_days": self.payment_term_days,
            "minimum_billing_amount": float(self.minimum_billing_amount) if self.minimum_billing_amount else None,
            "is_active": self.is_active,
            "priority": self.priority,
        }


class BillingBatch(Base):
    """
    Billing batch (invoice) header.

    Created pending by the aggregator; payment registration and overdue
    detection move it to paid / late. Immutable once paid.
    """

    __tablename__ = "billing_batch"

    batch_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    health_plan_id = Column(
        Uuid,
        ForeignKey("health_plan.health_plan_id"),
        nullable=False,
        index=True,
    )
    billing_rule_id = Column(
        Uuid,
        ForeignKey("billing_rule.rule_id"),
        nullable=False,
        index=True,
    )

    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, paid, late
    due_date = Column(Date, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    items = relationship("BillingBatchItem", back_populates="batch", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "batch_id": str(self.batch_id),
            "health_plan_id": str(self.health_plan_id),
            "billing_rule_id": str(self.billing_rule_id),
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "amount": float(self.amount) if self.amount is not None else None,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
        }


class BillingBatchItem(Base):
    """One appointment billed inside a batch."""

    __tablename__ = "billing_batch_item"

    item_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id = Column(
        Uuid,
        ForeignKey("billing_batch.batch_id"),
        nullable=False,
        index=True,
    )
    # Unique: an appointment is billed at most once across all batches
    appointment_id = Column(
        Uuid,
        ForeignKey("appointment.appointment_id"),
        nullable=False,
        unique=True,
    )
    amount = Column(Numeric(10, 2), nullable=False)

    batch = relationship("BillingBatch", back_populates="items")
