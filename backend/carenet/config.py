"""
Application configuration loaded from environment variables.

Supports switching between local and cloud PostgreSQL via DATABASE_MODE,
plus the scheduling and billing defaults consumed by the services.
Services never read the environment themselves: they receive a
SchedulingSettings / BillingSettings struct at construction.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

# Load .env file from backend directory
backend_dir = Path(__file__).parent.parent
load_dotenv(backend_dir / ".env")

logger = logging.getLogger("config")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    """Application configuration."""

    # Environment mode: "local" or "cloud"
    DATABASE_MODE = os.getenv("DATABASE_MODE", "local")

    # Explicit URL wins over the local/cloud PostgreSQL settings
    DATABASE_URL = os.getenv("DATABASE_URL", "")
    SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"

    # PostgreSQL - Local
    POSTGRES_HOST_LOCAL = os.getenv("POSTGRES_HOST_LOCAL", "localhost")
    POSTGRES_PORT_LOCAL = os.getenv("POSTGRES_PORT_LOCAL", "5432")
    POSTGRES_DB_LOCAL = os.getenv("POSTGRES_DB_LOCAL", "carenet")
    POSTGRES_USER_LOCAL = os.getenv("POSTGRES_USER_LOCAL", "postgres")
    POSTGRES_PASSWORD_LOCAL = os.getenv("POSTGRES_PASSWORD_LOCAL", "")

    # PostgreSQL - Cloud
    POSTGRES_HOST_CLOUD = os.getenv("POSTGRES_HOST_CLOUD", "")
    POSTGRES_PORT_CLOUD = os.getenv("POSTGRES_PORT_CLOUD", "5432")
    POSTGRES_DB_CLOUD = os.getenv("POSTGRES_DB_CLOUD", "carenet")
    POSTGRES_USER_CLOUD = os.getenv("POSTGRES_USER_CLOUD", "postgres")
    POSTGRES_PASSWORD_CLOUD = os.getenv("POSTGRES_PASSWORD_CLOUD", "")

    # Scheduling defaults
    DEFAULT_SLOT_DURATION = _int_env("DEFAULT_SLOT_DURATION", 30)  # minutes
    DEFAULT_BUFFER_TIME = _int_env("DEFAULT_BUFFER_TIME", 0)  # minutes
    DEFAULT_ADVANCE_BOOKING_DAYS = _int_env("DEFAULT_ADVANCE_BOOKING_DAYS", 30)
    CALENDAR_MAX_SPAN_DAYS = _int_env("CALENDAR_MAX_SPAN_DAYS", 90)
    SLOT_CLOCK_FORMAT = os.getenv("SLOT_CLOCK_FORMAT", "12h")  # "12h" or "24h"

    # Billing defaults
    DEFAULT_PAYMENT_TERM_DAYS = _int_env("DEFAULT_PAYMENT_TERM_DAYS", 30)
    BILLABLE_APPOINTMENT_STATUSES = os.getenv("BILLABLE_APPOINTMENT_STATUSES", "completed")

    @classmethod
    def get_database_url(cls) -> str:
        """Build the database URL based on DATABASE_URL / DATABASE_MODE."""
        if cls.DATABASE_URL:
            return cls.DATABASE_URL

        if cls.DATABASE_MODE == "cloud":
            host = cls.POSTGRES_HOST_CLOUD
            port = cls.POSTGRES_PORT_CLOUD
            db = cls.POSTGRES_DB_CLOUD
            user = cls.POSTGRES_USER_CLOUD
            password = cls.POSTGRES_PASSWORD_CLOUD
            mode_label = "CLOUD"
        else:
            host = cls.POSTGRES_HOST_LOCAL
            port = cls.POSTGRES_PORT_LOCAL
            db = cls.POSTGRES_DB_LOCAL
            user = cls.POSTGRES_USER_LOCAL
            password = cls.POSTGRES_PASSWORD_LOCAL
            mode_label = "LOCAL"

        if password:
            url = f"postgresql://{user}:{password}@{host}:{port}/{db}"
        else:
            url = f"postgresql://{user}@{host}:{port}/{db}"

        logger.info(f"PostgreSQL: {mode_label} ({host})")
        return url


@dataclass(frozen=True)
class SchedulingSettings:
    """
    Settings for the availability engine and schedule management.

    Attributes:
        default_slot_duration: slot length (minutes) for providers with no slot config
        default_buffer_time: minutes appended after each accepted slot
        default_advance_booking_days: booking horizon for providers with no slot config
        calendar_max_span_days: cap on the span of an availability calendar query
        clock_format: "12h" renders "9:00 AM - 9:30 AM", "24h" renders "09:00 - 09:30"
    """

    default_slot_duration: int = 30
    default_buffer_time: int = 0
    default_advance_booking_days: int = 30
    calendar_max_span_days: int = 90
    clock_format: str = "12h"

    @classmethod
    def from_config(cls, cfg: "Config" = None) -> "SchedulingSettings":
        cfg = cfg or config
        return cls(
            default_slot_duration=cfg.DEFAULT_SLOT_DURATION,
            default_buffer_time=cfg.DEFAULT_BUFFER_TIME,
            default_advance_booking_days=cfg.DEFAULT_ADVANCE_BOOKING_DAYS,
            calendar_max_span_days=cfg.CALENDAR_MAX_SPAN_DAYS,
            clock_format=cfg.SLOT_CLOCK_FORMAT,
        )


@dataclass(frozen=True)
class BillingSettings:
    """
    Settings for the billing batch aggregator.

    Attributes:
        default_payment_term_days: due-date offset for rules without payment_term_days
        billable_appointment_statuses: appointment statuses that count as billable events
    """

    default_payment_term_days: int = 30
    billable_appointment_statuses: Tuple[str, ...] = ("completed",)

    @classmethod
    def from_config(cls, cfg: "Config" = None) -> "BillingSettings":
        cfg = cfg or config
        statuses = tuple(
            s.strip() for s in cfg.BILLABLE_APPOINTMENT_STATUSES.split(",") if s.strip()
        )
        return cls(
            default_payment_term_days=cfg.DEFAULT_PAYMENT_TERM_DAYS,
            billable_appointment_statuses=statuses or ("completed",),
        )


# Singleton instance
config = Config()
