from slothold.schemas.booking import (
    BookingStep, Slot, LockHold, LockStatus, BookingFormData, BookingDetails,
    ConfirmedBooking, BookingEligibility, BookingSnapshot,
)
from slothold.schemas.event import EventSummary
from slothold.schemas.session import (
    BookingSessionCreate, BookingSessionResponse, SelectSlotRequest,
    FormUpdate, VisibilityChange, NavigationEvent, SlotListResponse,
)

__all__ = [
    "BookingStep", "Slot", "LockHold", "LockStatus", "BookingFormData", "BookingDetails",
    "ConfirmedBooking", "BookingEligibility", "BookingSnapshot",
    "EventSummary",
    "BookingSessionCreate", "BookingSessionResponse", "SelectSlotRequest",
    "FormUpdate", "VisibilityChange", "NavigationEvent", "SlotListResponse",
]
