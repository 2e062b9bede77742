"""
Scheduled jobs.

Entry points for an external scheduler (cron or similar):
- process_health_plan_billing: evaluates every active billing rule

Run at least once a day: payment notifications trigger on exact days.
"""

import logging
from datetime import datetime
from typing import Optional

from carenet.config import BillingSettings
from carenet.db.postgres import close_db_session, get_db_session
from carenet.repositories.sql import SqlBillingRepository
from carenet.services.billing_aggregator import BillingAggregator, BillingRunSummary
from carenet.services.notifications import NotificationDispatcher, NotificationLogSink

logger = logging.getLogger("job.billing")


def process_health_plan_billing(now: Optional[datetime] = None) -> BillingRunSummary:
    """
    Generate billing batches for all health plans.

    Returns the run summary. Individual rule failures are logged and
    reported in summary.failures; they do not raise.
    """
    now = now or datetime.now()
    logger.info(f"Starting health plan billing run at {now.isoformat()}")

    settings = BillingSettings.from_config()
    session = get_db_session()
    try:
        aggregator = BillingAggregator(
            repository=SqlBillingRepository(db_session=session, settings=settings),
            dispatcher=NotificationDispatcher(NotificationLogSink(db_session=session)),
            settings=settings,
        )
        summary = aggregator.evaluate_all_rules(now)
    finally:
        close_db_session()

    if summary.failures:
        logger.warning(f"Billing run finished with {len(summary.failures)} failed rules")
    return summary
