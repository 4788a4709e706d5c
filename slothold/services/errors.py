"""
Booking error taxonomy.

Every failure the booking flow can surface is one of four kinds. The kind,
not the message text, decides the recovery path:

  CAPACITY_CONFLICT  slot filled up between listing and hold, or between hold
                     and confirm. Lock discarded, back to slot selection.
  LOCK_EXPIRED       hold TTL elapsed. Lock discarded, back to slot selection.
  VALIDATION_ERROR   details or quantity rejected. Fixed in place, lock kept.
  NETWORK_ERROR      transport failure. Retried only when the user asks.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    CAPACITY_CONFLICT = "capacity_conflict"
    LOCK_EXPIRED = "lock_expired"
    VALIDATION_ERROR = "validation_error"
    NETWORK_ERROR = "network_error"


class BookingError(Exception):
    """Base booking error with a kind and a user-safe message."""

    kind: ErrorKind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def requires_reselect(self) -> bool:
        return self.kind in (ErrorKind.CAPACITY_CONFLICT, ErrorKind.LOCK_EXPIRED)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class CapacityConflictError(BookingError):
    """Raised when the requested capacity is no longer available."""

    kind = ErrorKind.CAPACITY_CONFLICT


class LockExpiredError(BookingError):
    """Raised when a hold has expired or was consumed elsewhere."""

    kind = ErrorKind.LOCK_EXPIRED


class BookingValidationError(BookingError):
    """Raised when quantity or booking details are rejected."""

    kind = ErrorKind.VALIDATION_ERROR


class NetworkError(BookingError):
    """Raised when the booking backend could not be reached or answered garbage."""

    kind = ErrorKind.NETWORK_ERROR
