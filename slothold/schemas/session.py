"""
Request/response schemas for the booking session endpoints.
"""

from typing import Optional
from pydantic import BaseModel, Field

from slothold.schemas.booking import BookingSnapshot, Slot


class BookingSessionCreate(BaseModel):
    event_id: str = Field(..., min_length=1)


class BookingSessionResponse(BaseModel):
    session_id: str
    event_id: str
    state: BookingSnapshot


class SelectSlotRequest(BaseModel):
    slot: Slot
    quantity: int = 1


class FormUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None


class VisibilityChange(BaseModel):
    visible: bool


class NavigationEvent(BaseModel):
    path: str


class SlotListResponse(BaseModel):
    slots: list[Slot]
    max_quantity: int
    cached: bool = False
