"""
Booking flow state machine.

    select-slot --select_slot--> fill-details --confirm_booking--> completed
         ^                            |
         +------ cancel_booking ------+   (also: capacity conflict, expired lock)

HOLD OWNERSHIP
==============
The flow is the only writer of the active hold. A hold ends in exactly one
of three ways:
  1. the user cancels (release_lock, best effort)
  2. a confirm consumes it
  3. the server expires it

Nothing else releases a hold: not navigation, not a re-render, not the view
going away, not the countdown reaching zero. Releasing on route changes used
to drop legitimate holds when a booking link was opened in a second tab.

ORDERING
========
One action is in flight at a time (`loading`). Every network call remembers
the state generation it was issued under; cancel/reset bump the generation,
so a response that arrives late is discarded instead of resurrecting a
booking the user already walked away from. A hold granted after the user
cancelled is given back; one granted after a reset or dispose is left to the
server TTL like any other hold.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from slothold.core.config import get_settings
from slothold.core.logging import get_logger
from slothold.core.metrics import record_booking_error, record_lock_operation, record_stale_response
from slothold.schemas.booking import (
    BookingDetails,
    BookingFormData,
    BookingSnapshot,
    BookingStep,
    ConfirmedBooking,
    Slot,
)
from slothold.services.countdown import CountdownTimer, time_remaining
from slothold.services.errors import (
    BookingError,
    BookingValidationError,
    CapacityConflictError,
    ErrorKind,
    LockExpiredError,
    NetworkError,
)
from slothold.services.interfaces.backend import BookingBackend

logger = get_logger(__name__)

EXPIRED_MESSAGE = "Your reservation has expired. Please select a new slot."

_OPERATION_RESULTS = {
    ErrorKind.CAPACITY_CONFLICT: "conflict",
    ErrorKind.LOCK_EXPIRED: "expired",
    ErrorKind.VALIDATION_ERROR: "invalid",
    ErrorKind.NETWORK_ERROR: "error",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BookingState:
    step: BookingStep = BookingStep.SELECT_SLOT
    selected_slot: Optional[Slot] = None
    selected_quantity: int = 1
    lock_id: Optional[str] = None
    lock_expires_at: Optional[datetime] = None
    presumed_expired: bool = False
    form: BookingFormData = field(default_factory=BookingFormData)
    booking: Optional[ConfirmedBooking] = None
    loading: bool = False
    verifying: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    time_remaining: int = 0


def _describe_invalid_details(form: BookingFormData, e: ValidationError) -> str:
    if not form.first_name.strip() or not form.last_name.strip() or not form.email.strip():
        return "Please fill in all required fields."
    if any(err["loc"] and err["loc"][0] == "email" for err in e.errors()):
        return "Please enter a valid email address."
    return "Please check your booking details."


class BookingFlow:
    """
    Drives one booking attempt against a BookingBackend.

    Display code reads state through the properties or `snapshot()` and
    mutates it only through the action methods.
    """

    def __init__(
        self,
        backend: BookingBackend,
        clock: Callable[[], datetime] = _utcnow,
        countdown_interval: Optional[float] = None,
        max_quantity: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._backend = backend
        self._clock = clock
        self.max_quantity = max_quantity or settings.MAX_BOOKING_QUANTITY
        self._timer = CountdownTimer(
            countdown_interval or settings.COUNTDOWN_INTERVAL_SECONDS,
            self._tick,
        )
        self._generation = 0
        # Generation at which the user last cancelled; only cancel gives late holds back
        self._cancelled_at = 0
        self._state = BookingState()

    # -- read side ---------------------------------------------------------

    @property
    def step(self) -> BookingStep:
        return self._state.step

    @property
    def selected_slot(self) -> Optional[Slot]:
        return self._state.selected_slot

    @property
    def selected_quantity(self) -> int:
        return self._state.selected_quantity

    @property
    def lock_id(self) -> Optional[str]:
        return self._state.lock_id

    @property
    def lock_expires_at(self) -> Optional[datetime]:
        return self._state.lock_expires_at

    @property
    def form_data(self) -> BookingFormData:
        return self._state.form

    @property
    def booking(self) -> Optional[ConfirmedBooking]:
        return self._state.booking

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def verifying_lock(self) -> bool:
        return self._state.verifying

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self._state.error_kind

    @property
    def time_remaining(self) -> int:
        return self._state.time_remaining

    @property
    def countdown_running(self) -> bool:
        return self._timer.running

    @property
    def lock_presumed_expired(self) -> bool:
        """Local belief only; the server decides when the hold really ends."""
        s = self._state
        if s.lock_id is None:
            return False
        if s.presumed_expired:
            return True
        return s.lock_expires_at is not None and self._clock() >= s.lock_expires_at

    def max_selectable_quantity(self, slot: Slot) -> int:
        return max(0, min(self.max_quantity, slot.available_count))

    def snapshot(self) -> BookingSnapshot:
        s = self._state
        return BookingSnapshot(
            step=s.step,
            selected_slot=s.selected_slot,
            selected_quantity=s.selected_quantity,
            lock_id=s.lock_id,
            lock_expires_at=s.lock_expires_at,
            form_data=s.form,
            booking=s.booking,
            loading=s.loading,
            verifying_lock=s.verifying,
            error=s.error,
            error_kind=s.error_kind.value if s.error_kind else None,
            time_remaining=s.time_remaining,
        )

    # -- actions -----------------------------------------------------------

    async def select_slot(self, slot: Slot, quantity: int) -> None:
        """Hold `quantity` units of `slot` and move on to the details form."""
        if self._busy("select_slot"):
            return
        if self._state.step is not BookingStep.SELECT_SLOT:
            logger.warning("select_slot_out_of_step", step=self._state.step.value)
            return

        try:
            self._check_selection(slot, quantity)
        except BookingError as e:
            self._surface(e)
            return

        self._generation += 1
        generation = self._generation
        state = self._state
        state.loading = True
        self._clear_error()

        try:
            hold = await self._backend.acquire_lock(slot.slot_id, quantity)
        except BookingError as e:
            if self._is_stale(generation, "acquire"):
                return
            record_lock_operation("acquire", _OPERATION_RESULTS[e.kind])
            state.loading = False
            self._surface(e)
            return
        finally:
            if generation == self._generation:
                state.loading = False

        if self._is_stale(generation, "acquire"):
            if self._cancelled_at > generation:
                await self._release_quietly(hold.lock_id)
            else:
                logger.info("late_lock_left_to_ttl", lock_id=hold.lock_id)
            return

        record_lock_operation("acquire", "success")
        state.selected_slot = slot
        state.selected_quantity = quantity
        state.lock_id = hold.lock_id
        state.lock_expires_at = hold.expires_at
        state.presumed_expired = False
        state.time_remaining = time_remaining(hold.expires_at, self._clock())
        state.step = BookingStep.FILL_DETAILS
        self._clear_error()
        self._timer.start()

        logger.info(
            "lock_acquired",
            lock_id=hold.lock_id,
            slot_id=slot.slot_id,
            quantity=quantity,
            expires_at=hold.expires_at.isoformat(),
        )

    def update_form_data(self, **fields) -> None:
        unknown = set(fields) - set(BookingFormData.model_fields)
        if unknown:
            raise TypeError(f"Unknown booking form fields: {', '.join(sorted(unknown))}")
        if self._state.step is BookingStep.COMPLETED:
            logger.warning("form_update_after_completion")
            return
        self._state.form = BookingFormData.model_validate(
            {**self._state.form.model_dump(), **fields}
        )

    async def confirm_booking(self) -> None:
        """Turn the held lock into a confirmed booking."""
        if self._busy("confirm_booking"):
            return
        state = self._state
        if state.step is BookingStep.COMPLETED:
            logger.warning("confirm_after_completion")
            return
        if state.step is not BookingStep.FILL_DETAILS or state.lock_id is None:
            self._surface(LockExpiredError("No active reservation found. Please select a slot."))
            return

        if self.lock_presumed_expired:
            self._discard_lock(LockExpiredError(EXPIRED_MESSAGE, {"lock_id": state.lock_id}))
            return

        form = state.form
        try:
            BookingDetails.model_validate(form.model_dump())
        except ValidationError as e:
            self._surface(BookingValidationError(_describe_invalid_details(form, e)))
            return

        generation = self._generation
        lock_id = state.lock_id
        state.loading = True
        self._clear_error()

        try:
            booking = await self._backend.confirm_booking(lock_id, form)
        except BookingError as e:
            if self._is_stale(generation, "confirm"):
                return
            record_lock_operation("confirm", _OPERATION_RESULTS[e.kind])
            if e.requires_reselect:
                self._discard_lock(e)
            else:
                state.loading = False
                self._surface(e)
            return
        finally:
            if generation == self._generation:
                state.loading = False

        if self._is_stale(generation, "confirm"):
            return

        record_lock_operation("confirm", "success")
        self._timer.stop()
        state.booking = booking
        state.step = BookingStep.COMPLETED
        state.lock_id = None  # consumed
        state.lock_expires_at = None
        state.time_remaining = 0
        state.verifying = False
        self._clear_error()

        logger.info(
            "booking_confirmed",
            lock_id=lock_id,
            booking_reference=booking.booking_reference,
        )

    async def cancel_booking(self) -> None:
        """Give the hold back and return to slot selection.

        State is cleared before the release call goes out; the release itself
        is a courtesy. If it fails the server TTL reclaims the capacity.
        """
        lock_id = self._state.lock_id
        self._timer.stop()
        self._generation += 1
        self._cancelled_at = self._generation
        self._state = BookingState()

        if lock_id is None:
            return
        logger.info("booking_cancelled", lock_id=lock_id)
        await self._release_quietly(lock_id)

    def reset_booking(self) -> None:
        """Start over. Does not release anything."""
        self._timer.stop()
        self._generation += 1
        self._state = BookingState()

    def clear_error(self) -> None:
        self._clear_error()

    def close(self) -> None:
        """Leave a completed booking."""
        if self._state.step is not BookingStep.COMPLETED:
            logger.warning("close_out_of_step", step=self._state.step.value)
            return
        self.reset_booking()

    def dispose(self) -> None:
        """Stop the countdown when the owning view goes away. The hold stays."""
        self._timer.stop()
        self._generation += 1
        self._state.loading = False
        self._state.verifying = False

    async def verify_lock_validity(self) -> None:
        """
        Re-check the hold with the server, e.g. when the tab becomes visible.

        Read-only: an invalid hold surfaces LOCK_EXPIRED in fill-details and
        waits for the user; an inconclusive check gives the hold the benefit
        of the doubt.
        """
        state = self._state
        if state.step is not BookingStep.FILL_DETAILS or state.lock_id is None:
            return

        generation = self._generation
        lock_id = state.lock_id
        state.verifying = True
        try:
            status = await self._backend.verify_lock(lock_id)
        except BookingError as e:
            record_lock_operation("verify", "error")
            logger.warning("lock_verification_inconclusive", lock_id=lock_id, error=e.message)
            return
        finally:
            state.verifying = False

        if self._verification_is_stale(generation, state, lock_id):
            return

        if status.valid:
            record_lock_operation("verify", "valid")
            logger.debug("lock_still_valid", lock_id=lock_id, remaining=status.remaining.total_seconds())
            return

        record_lock_operation("verify", "invalid")
        self._timer.stop()
        state.presumed_expired = True
        state.time_remaining = 0
        self._surface(LockExpiredError(EXPIRED_MESSAGE, {"lock_id": lock_id, "reason": status.reason}))

    # -- internals ---------------------------------------------------------

    def _check_selection(self, slot: Slot, quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise BookingValidationError("Invalid quantity: must be a positive integer")
        available = slot.available_count
        if available == 0:
            raise CapacityConflictError(
                "This time slot is fully booked. Please select another time.",
                {"slot_id": slot.slot_id},
            )
        if quantity > available:
            raise CapacityConflictError(
                f"Only {available} slot{'' if available == 1 else 's'} available, but {quantity} requested",
                {"slot_id": slot.slot_id, "requested_quantity": quantity},
            )
        if quantity > self.max_quantity:
            raise BookingValidationError(f"You can book at most {self.max_quantity} at a time.")

    async def _tick(self) -> None:
        state = self._state
        if state.lock_expires_at is None:
            return
        state.time_remaining = time_remaining(state.lock_expires_at, self._clock())
        if state.time_remaining > 0 or state.verifying:
            return

        # Local clock says the hold is gone; ask before saying so
        self._timer.stop()
        await self._reconcile_expiry(state)

    async def _reconcile_expiry(self, state: BookingState) -> None:
        generation = self._generation
        lock_id = state.lock_id
        if lock_id is None:
            return

        state.verifying = True
        try:
            status = await self._backend.verify_lock(lock_id)
        except BookingError as e:
            if self._verification_is_stale(generation, state, lock_id):
                return
            record_lock_operation("verify", "error")
            state.presumed_expired = True
            self._surface(NetworkError(
                "Unable to verify reservation status. Please try again.",
                {"lock_id": lock_id, "error": e.message},
            ))
            return
        finally:
            state.verifying = False

        if self._verification_is_stale(generation, state, lock_id):
            return

        if status.valid and status.expires_at is not None and status.expires_at > self._clock():
            record_lock_operation("verify", "valid")
            state.lock_expires_at = status.expires_at
            state.time_remaining = time_remaining(status.expires_at, self._clock())
            self._timer.start()
            logger.info("lock_expiry_resynced", lock_id=lock_id, expires_at=status.expires_at.isoformat())
            return

        record_lock_operation("verify", "invalid")
        state.presumed_expired = True
        state.time_remaining = 0
        self._surface(LockExpiredError(EXPIRED_MESSAGE, {"lock_id": lock_id, "reason": status.reason}))

    def _discard_lock(self, error: BookingError) -> None:
        """Drop the hold locally after the server refused it. Form data stays on screen."""
        lock_id = self._state.lock_id
        form = self._state.form
        self._timer.stop()
        self._generation += 1
        self._state = BookingState(form=form)
        logger.info("lock_discarded", lock_id=lock_id, kind=error.kind.value)
        self._surface(error)

    async def _release_quietly(self, lock_id: str) -> None:
        try:
            released = await self._backend.release_lock(lock_id)
        except BookingError as e:
            record_lock_operation("release", "error")
            logger.warning("lock_release_failed", lock_id=lock_id, error=e.message)
            return
        record_lock_operation("release", "success" if released else "noop")
        logger.info("lock_released", lock_id=lock_id, released=released)

    def _busy(self, action: str) -> bool:
        if self._state.loading:
            logger.warning("action_ignored_while_loading", action=action)
            return True
        return False

    def _is_stale(self, generation: int, operation: str) -> bool:
        if generation != self._generation:
            record_stale_response(operation)
            logger.info("stale_response_discarded", operation=operation)
            return True
        return False

    def _verification_is_stale(self, generation: int, state: BookingState, lock_id: str) -> bool:
        if (
            generation != self._generation
            or state is not self._state
            or state.step is not BookingStep.FILL_DETAILS
            or state.lock_id != lock_id
        ):
            record_stale_response("verify")
            return True
        return False

    def _surface(self, error: BookingError) -> None:
        self._state.error = error.message
        self._state.error_kind = error.kind
        record_booking_error(error.kind.value)
        logger.info("booking_error_surfaced", kind=error.kind.value, error=error.message)

    def _clear_error(self) -> None:
        self._state.error = None
        self._state.error_kind = None
