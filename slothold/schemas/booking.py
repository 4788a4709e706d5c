"""
Pydantic schemas for slots, holds and bookings.

Slot counts are server-authoritative: a Slot is frozen and only ever replaced
by a fresh listing, never decremented locally.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator


class BookingStep(str, Enum):
    SELECT_SLOT = "select-slot"
    FILL_DETAILS = "fill-details"
    COMPLETED = "completed"


class Slot(BaseModel):
    slot_id: str
    start_time: datetime
    end_time: datetime
    total_capacity: int = Field(..., ge=1)
    available_count: int = Field(..., ge=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _available_within_capacity(self) -> "Slot":
        if self.available_count > self.total_capacity:
            raise ValueError("available_count cannot exceed total_capacity")
        return self


class LockHold(BaseModel):
    lock_id: str
    slot_id: str
    quantity: int = Field(..., ge=1)
    expires_at: datetime

    model_config = {"frozen": True}


class LockStatus(BaseModel):
    valid: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    remaining: timedelta = timedelta(0)


class BookingFormData(BaseModel):
    """Draft booking details as typed so far. Nothing here is validated."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: Optional[str] = None
    notes: Optional[str] = None


class BookingDetails(BaseModel):
    """Booking details as they must look before a confirm is attempted."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=30)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("first_name", "last_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ConfirmedBooking(BaseModel):
    booking_reference: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    date: str
    time: str
    status: str = "confirmed"
    id: Optional[str] = None
    event_id: Optional[str] = None
    slot_id: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"frozen": True}


class BookingEligibility(BaseModel):
    can_book: bool
    reason: Optional[str] = None
    available_slots: int = 0


class BookingSnapshot(BaseModel):
    """Read-only view of a booking flow, as handed to display code."""

    step: BookingStep
    selected_slot: Optional[Slot] = None
    selected_quantity: int = 1
    lock_id: Optional[str] = None
    lock_expires_at: Optional[datetime] = None
    form_data: BookingFormData
    booking: Optional[ConfirmedBooking] = None
    loading: bool = False
    verifying_lock: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    time_remaining: int = 0
