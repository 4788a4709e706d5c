"""
Booking backend backed by database RPC functions.

The server owns all capacity accounting: `create_slot_lock` takes a row lock
on the slot and subtracts every other session's active holds before
reserving, `complete_slot_booking` re-checks capacity before consuming the
hold, and expired holds are reclaimed server-side. This module never guesses
at any of that. It only translates calls and turns the server's error text
into the ErrorKind taxonomy, so nothing above this layer inspects strings.

Expiry times always come from the server (`slot_locks.expires_at`); the
client clock is never used to mint one.
"""

import re
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from pydantic import TypeAdapter, ValidationError

from slothold.core.config import get_settings
from slothold.core.logging import get_logger
from slothold.infrastructure.rpc_client import RpcClient, RpcError, RpcTransportError
from slothold.schemas.booking import (
    BookingEligibility,
    BookingFormData,
    ConfirmedBooking,
    LockHold,
    LockStatus,
    Slot,
)
from slothold.schemas.event import EventSummary
from slothold.services.errors import (
    BookingError,
    BookingValidationError,
    CapacityConflictError,
    LockExpiredError,
    NetworkError,
)
from slothold.services.interfaces.backend import BookingBackend

logger = get_logger(__name__)

FUNCTION_NOT_FOUND = "PGRST202"
ROW_NOT_FOUND = "PGRST116"

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_timestamp = TypeAdapter(Optional[datetime])


def new_session_id() -> str:
    """Browser-style session id the server uses to tell our holds from others'."""
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    parsed = _timestamp.validate_python(value)
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check_quantity(quantity: Any) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise BookingValidationError(
            f"Invalid quantity: {quantity}. Must be a positive integer.",
            {"quantity": quantity},
        )


def _slot_from_row(row: dict) -> Slot:
    slot_id = row.get("slot_id") or row.get("id")
    if not slot_id:
        raise KeyError("slot_id")
    return Slot(
        slot_id=str(slot_id),
        start_time=row["start_time"],
        end_time=row["end_time"],
        total_capacity=row["total_capacity"],
        available_count=row["available_count"],
        price=row.get("price") or 0,
    )


def _is_data_exception(code: Optional[str]) -> bool:
    # SQLSTATE class 22 (data exception) and 23 (integrity constraint violation)
    return bool(code) and code[:2] in ("22", "23")


def _backend_unavailable(e: RpcError) -> NetworkError:
    return NetworkError(
        "Booking system not available. Please contact support.",
        {"code": e.code, "message": e.message},
    )


def _classify_acquire_error(e: RpcError, slot_id: str, quantity: int) -> BookingError:
    if e.code == FUNCTION_NOT_FOUND:
        return _backend_unavailable(e)
    text = e.message.lower()
    if "insufficient" in text or "capacity" in text:
        return CapacityConflictError(e.message, {"slot_id": slot_id, "requested_quantity": quantity})
    if "not available" in text or "not found" in text or "in the past" in text:
        return CapacityConflictError(
            "Slot is no longer available. Please select a different time.",
            {"slot_id": slot_id},
        )
    if "quantity" in text or _is_data_exception(e.code):
        return BookingValidationError(e.message, {"code": e.code})
    return NetworkError(e.message, {"code": e.code})


def _classify_confirm_error(e: RpcError, lock_id: str) -> BookingError:
    if e.code == FUNCTION_NOT_FOUND:
        return _backend_unavailable(e)
    text = e.message.lower()
    if "expired" in text or "not found" in text:
        return LockExpiredError(
            "Your reservation has expired. Please select a new time slot.",
            {"lock_id": lock_id},
        )
    if "capacity" in text or "insufficient" in text:
        return CapacityConflictError(
            "Slot capacity has changed. Please select a different time.",
            {"lock_id": lock_id},
        )
    if _is_data_exception(e.code):
        return BookingValidationError(e.message, {"code": e.code})
    return NetworkError(e.message, {"code": e.code})


class RpcBookingBackend(BookingBackend):
    """One instance per booking session; the RpcClient underneath is shared."""

    def __init__(
        self,
        client: RpcClient,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        lock_duration_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self.session_id = session_id or new_session_id()
        self.user_id = user_id
        self.lock_duration_minutes = lock_duration_minutes or get_settings().LOCK_DURATION_MINUTES
        self._clock = clock

    async def acquire_lock(self, slot_id: str, quantity: int) -> LockHold:
        _check_quantity(quantity)

        try:
            lock_id = await self._client.call("create_slot_lock", {
                "p_slot_id": slot_id,
                "p_user_id": self.user_id,
                "p_session_id": self.session_id,
                "p_quantity": quantity,
                "p_lock_duration_minutes": self.lock_duration_minutes,
            })
        except RpcTransportError as e:
            raise NetworkError("Failed to reserve slot. Please try again.", {"slot_id": slot_id}) from e
        except RpcError as e:
            logger.warning("create_slot_lock_rejected", slot_id=slot_id, code=e.code, error=e.message)
            raise _classify_acquire_error(e, slot_id, quantity) from e

        if not isinstance(lock_id, str) or not lock_id:
            raise NetworkError("Invalid response from booking system", {"received": type(lock_id).__name__})

        # Expiry is read back from the server, never computed locally
        try:
            row = await self._client.select_one("slot_locks", "id", lock_id, columns="expires_at")
            expires_at = _parse_timestamp(row.get("expires_at"))
        except (RpcError, RpcTransportError, ValidationError, AttributeError) as e:
            logger.error("lock_details_unavailable", lock_id=lock_id, error=str(e))
            await self._release_orphan(lock_id)
            raise NetworkError("Failed to retrieve lock details", {"lock_id": lock_id}) from e
        if expires_at is None:
            await self._release_orphan(lock_id)
            raise NetworkError("Failed to retrieve lock details", {"lock_id": lock_id})

        return LockHold(lock_id=lock_id, slot_id=slot_id, quantity=quantity, expires_at=expires_at)

    async def _release_orphan(self, lock_id: str) -> None:
        try:
            await self.release_lock(lock_id)
        except NetworkError as e:
            logger.warning("orphan_lock_release_failed", lock_id=lock_id, error=e.message)

    async def verify_lock(self, lock_id: str) -> LockStatus:
        try:
            rows = await self._client.call("verify_lock", {"p_lock_id": lock_id})
        except RpcTransportError as e:
            raise NetworkError("Failed to verify reservation", {"lock_id": lock_id}) from e
        except RpcError as e:
            if e.code == FUNCTION_NOT_FOUND:
                raise _backend_unavailable(e) from e
            raise NetworkError("Failed to verify reservation", {"lock_id": lock_id, "error": e.message}) from e

        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            return LockStatus(valid=False, reason="Reservation not found")

        row = rows[0] if isinstance(rows, list) else None
        if not isinstance(row, dict):
            raise NetworkError("Invalid response from booking system", {"lock_id": lock_id})
        try:
            expires_at = _parse_timestamp(row.get("expires_at"))
        except ValidationError as e:
            raise NetworkError("Invalid response from booking system", {"lock_id": lock_id}) from e

        valid = bool(row.get("is_valid"))
        remaining = timedelta(0)
        if valid and expires_at is not None:
            remaining = max(expires_at - self._clock(), timedelta(0))
        return LockStatus(
            valid=valid,
            reason=None if valid else row.get("reason"),
            expires_at=expires_at,
            remaining=remaining,
        )

    async def confirm_booking(self, lock_id: str, form: BookingFormData) -> ConfirmedBooking:
        try:
            booking_id = await self._client.call("complete_slot_booking", {
                "p_lock_id": lock_id,
                "p_first_name": form.first_name,
                "p_last_name": form.last_name,
                "p_email": form.email,
                "p_phone": form.phone or None,
                "p_notes": form.notes or None,
            })
        except RpcTransportError as e:
            raise NetworkError(
                "Failed to complete booking. Please contact support if you were charged.",
                {"lock_id": lock_id},
            ) from e
        except RpcError as e:
            logger.warning("complete_slot_booking_rejected", lock_id=lock_id, code=e.code, error=e.message)
            raise _classify_confirm_error(e, lock_id) from e

        try:
            row = await self._client.select_one("bookings", "id", str(booking_id))
            return ConfirmedBooking.model_validate(row)
        except (RpcError, RpcTransportError, ValidationError) as e:
            logger.error("booking_details_unavailable", booking_id=booking_id, error=str(e))
            raise NetworkError(
                "Booking created but failed to retrieve details",
                {"booking_id": booking_id},
            ) from e

    async def release_lock(self, lock_id: str) -> bool:
        try:
            released = await self._client.call("release_slot_lock", {"p_lock_id": lock_id})
        except RpcTransportError as e:
            raise NetworkError("Failed to release reservation", {"lock_id": lock_id}) from e
        except RpcError as e:
            raise NetworkError(e.message, {"lock_id": lock_id, "code": e.code}) from e
        return bool(released)

    async def list_available_slots(self, event_id: str) -> list[Slot]:
        try:
            rows = await self._client.call("get_available_slots", {
                "p_event_id": event_id,
                "p_session_id": self.session_id,
            })
        except RpcTransportError as e:
            raise NetworkError(
                "Failed to load available slots. Please refresh the page and try again.",
                {"event_id": event_id},
            ) from e
        except RpcError as e:
            if e.code == FUNCTION_NOT_FOUND:
                raise _backend_unavailable(e) from e
            raise NetworkError(
                "Failed to load available slots. Please try again.",
                {"code": e.code, "message": e.message},
            ) from e

        if not isinstance(rows, list):
            raise NetworkError("Invalid response from booking system", {"received": type(rows).__name__})

        try:
            return [_slot_from_row(row) for row in rows]
        except (KeyError, AttributeError, ValidationError) as e:
            raise NetworkError("Invalid response from booking system", {"event_id": event_id}) from e

    async def get_event(self, id_or_slug: str) -> Optional[EventSummary]:
        column = "id" if _UUID_RE.match(id_or_slug) else "slug"
        try:
            row = await self._client.select_one("events", column, id_or_slug)
        except RpcTransportError as e:
            raise NetworkError("Failed to load event", {"event": id_or_slug}) from e
        except RpcError as e:
            if e.code == ROW_NOT_FOUND:
                return None
            raise NetworkError("Failed to load event", {"code": e.code, "message": e.message}) from e
        return EventSummary.model_validate(row)

    async def can_book_event(self, event_id: str, quantity: int) -> BookingEligibility:
        _check_quantity(quantity)

        try:
            rows = await self._client.call("can_book_event", {
                "p_event_id": event_id,
                "p_quantity": quantity,
            })
        except (RpcError, RpcTransportError) as e:
            raise NetworkError("Failed to check booking eligibility", {"event_id": event_id}) from e

        if not rows:
            return BookingEligibility(can_book=False, reason="Unable to verify booking eligibility")

        row = rows[0] if isinstance(rows, list) else None
        if not isinstance(row, dict):
            raise NetworkError("Invalid response from booking system", {"event_id": event_id})
        can_book = bool(row.get("can_book"))
        return BookingEligibility(
            can_book=can_book,
            reason=None if can_book else row.get("reason"),
            available_slots=row.get("available_slots") or 0,
        )
