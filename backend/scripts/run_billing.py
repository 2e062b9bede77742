#!/usr/bin/env python3
"""
Run the health plan billing job once.

Intended for cron:
    0 2 * * * cd backend && python scripts/run_billing.py

Payment notifications trigger on exact days, so schedule it at least daily.

Usage:
    python scripts/run_billing.py                    # evaluate as of now
    python scripts/run_billing.py --date 2026-03-15  # evaluate as of a given day
    python scripts/run_billing.py --init-db          # create tables first
"""

import sys
import os
import json
import argparse
import logging
from datetime import datetime

# Ensure backend is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from carenet.db.postgres import init_db
from carenet.jobs import process_health_plan_billing


def main():
    parser = argparse.ArgumentParser(description="Generate health plan billing batches")
    parser.add_argument("--date", help="Evaluate as of this day (YYYY-MM-DD)")
    parser.add_argument("--init-db", action="store_true",
                        help="Create missing tables before running")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    now = datetime.now()
    if args.date:
        try:
            day = datetime.strptime(args.date, "%Y-%m-%d").date()
        except ValueError:
            parser.error(f"invalid --date: {args.date}")
        now = datetime.combine(day, now.time())

    if args.init_db:
        init_db()

    summary = process_health_plan_billing(now)

    print(json.dumps(summary.to_dict(), indent=2))
    return 1 if summary.failures else 0


if __name__ == "__main__":
    sys.exit(main())
