"""
Billing notification delivery.

The aggregator emits channel-agnostic NotificationEvents; a sink decides
what to do with them (mail, WhatsApp, push, or simply recording them).
Delivery is best-effort: NotificationDispatcher swallows and logs sink
failures so a send error never undoes the billing work that caused it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session as DbSession

from carenet.db.postgres import get_db_session
from carenet.domain import NotificationEvent
from carenet.models import NotificationLog


class NotificationSink(ABC):
    """Receives billing notification events."""

    @abstractmethod
    def send(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    """Writes each event to the log. Useful for dry runs."""

    def __init__(self):
        self.logger = logging.getLogger("notifications.log")

    def send(self, event: NotificationEvent) -> None:
        self.logger.info(f"{event.type.value}: {event.payload()}")


class NotificationLogSink(NotificationSink):
    """
    Append-only notification ledger.

    Delivery workers read pending rows from notification_log and push
    them through the real channels. Rows are never updated here.
    """

    def __init__(self, db_session: Optional[DbSession] = None):
        self._explicit_db = db_session

    @property
    def db(self) -> DbSession:
        if self._explicit_db is not None:
            return self._explicit_db
        return get_db_session()

    def send(self, event: NotificationEvent) -> None:
        entry = NotificationLog(
            event_type=event.type.value,
            health_plan_id=event.health_plan_id,
            batch_id=event.batch_id,
            payload_json=event.payload(),
        )
        db = self.db
        db.add(entry)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise


class NotificationDispatcher:
    """Best-effort fan-out of events to a sink."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LoggingNotificationSink()
        self.logger = logging.getLogger("service.NotificationDispatcher")

    def dispatch(self, event: NotificationEvent) -> bool:
        """Deliver one event; returns False if the sink failed."""
        try:
            self.sink.send(event)
            return True
        except Exception as e:
            self.logger.warning(
                f"Failed to dispatch {event.type.value} for health plan {event.health_plan_id} "
                f"(batch {event.batch_id}): {e}"
            )
            return False

    def dispatch_all(self, events: Iterable[NotificationEvent]) -> List[NotificationEvent]:
        """Deliver events in order; returns the ones that failed."""
        return [event for event in events if not self.dispatch(event)]
