"""
Error types raised by the scheduling and billing services.

"Configuration absent" situations (no template for a day, no matching
rule) are not errors: they surface as a reason string on the result.
"""

from typing import Dict, Optional


class CarenetError(Exception):
    """Base class for all carenet errors."""


class ValidationError(CarenetError, ValueError):
    """
    A request was rejected before any state was written.

    `reason` is machine-readable (e.g. "invalid_request",
    "overlapping_bookings"); `errors` maps field names to messages.
    """

    def __init__(self, message: str, reason: str = "invalid_request", errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.errors = errors or {}

    def to_dict(self) -> dict:
        return {"message": self.message, "reason": self.reason, "errors": self.errors}


class NotFoundError(CarenetError, LookupError):
    """A referenced provider or exception does not exist."""
