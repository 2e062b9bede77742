"""
Notification log model.

Append-only ledger of billing notification events waiting for (or
handed to) a delivery channel.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Uuid

from carenet.db.postgres import Base


class NotificationLog(Base):
    """
    Append-only notification ledger.

    Rows are inserted by NotificationLogSink and never updated there.
    """

    __tablename__ = "notification_log"

    notification_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(String(50), nullable=False)  # batch_created, payment_due, ...

    health_plan_id = Column(Uuid, nullable=False, index=True)
    batch_id = Column(Uuid, nullable=True)

    payload_json = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "notification_id": str(self.notification_id),
            "event_type": self.event_type,
            "health_plan_id": str(self.health_plan_id),
            "batch_id": str(self.batch_id) if self.batch_id else None,
            "payload": self.payload_json,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
