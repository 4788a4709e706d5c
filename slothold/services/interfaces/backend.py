"""
Booking backend interface.
The booking flow only talks to the server through this contract, so the
transport can be swapped (RPC over HTTPS, in-memory fake for tests).
"""

from abc import ABC, abstractmethod
from typing import Optional

from slothold.schemas.booking import (
    BookingEligibility,
    BookingFormData,
    ConfirmedBooking,
    LockHold,
    LockStatus,
    Slot,
)
from slothold.schemas.event import EventSummary


class BookingBackend(ABC):
    """
    Server authority for slot holds.

    Implementations:
    - RpcBookingBackend: PostgREST-style RPC functions over HTTPS
    """

    @abstractmethod
    async def acquire_lock(self, slot_id: str, quantity: int) -> LockHold:
        """
        Reserve `quantity` units of a slot for this session.

        Raises:
            CapacityConflictError: Not enough capacity left.
            BookingValidationError: Quantity rejected.
            NetworkError: Backend unreachable.
        """
        pass

    @abstractmethod
    async def verify_lock(self, lock_id: str) -> LockStatus:
        """
        Ask the server whether a hold is still valid. Read-only.

        Raises:
            NetworkError: Inconclusive; callers must not treat it as invalid.
        """
        pass

    @abstractmethod
    async def confirm_booking(self, lock_id: str, form: BookingFormData) -> ConfirmedBooking:
        """
        Consume a hold and turn it into a confirmed booking.

        Raises:
            LockExpiredError: Hold expired, released or already consumed.
            CapacityConflictError: Slot filled up server-side.
            BookingValidationError: Details rejected.
            NetworkError: Backend unreachable.
        """
        pass

    @abstractmethod
    async def release_lock(self, lock_id: str) -> bool:
        """Release a hold early. Returns False if nothing was released."""
        pass

    @abstractmethod
    async def list_available_slots(self, event_id: str) -> list[Slot]:
        """Bookable slots of an event, with capacity net of other sessions' holds."""
        pass

    @abstractmethod
    async def get_event(self, id_or_slug: str) -> Optional[EventSummary]:
        pass

    @abstractmethod
    async def can_book_event(self, event_id: str, quantity: int) -> BookingEligibility:
        pass
