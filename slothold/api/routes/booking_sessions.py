"""
Booking session endpoints.

Each session wraps one BookingFlow. Flow errors (conflicts, expired holds,
validation) are part of the returned state, not HTTP errors: the display
layer decides how to show them and when the user has acknowledged them.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from slothold.api.dependencies import get_session_registry, require_session
from slothold.schemas.session import (
    BookingSessionCreate,
    BookingSessionResponse,
    FormUpdate,
    NavigationEvent,
    SelectSlotRequest,
    SlotListResponse,
    VisibilityChange,
)
from slothold.services.cache_service import get_cached_slots, invalidate_slot_cache, set_cached_slots
from slothold.services.errors import BookingError
from slothold.services.session_registry import BookingSession, BookingSessionRegistry
from slothold.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/booking-sessions", tags=["Booking Sessions"])


def _respond(session: BookingSession) -> BookingSessionResponse:
    return BookingSessionResponse(
        session_id=session.session_id,
        event_id=session.event_id,
        state=session.flow.snapshot(),
    )


@router.post("/", response_model=BookingSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: BookingSessionCreate,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    """Start a booking session for an event."""
    return _respond(registry.create(payload.event_id))


@router.get("/{session_id}", response_model=BookingSessionResponse)
async def get_session(
    session_id: str,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    return _respond(require_session(registry, session_id))


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    """Drop a session. An active hold is NOT released; the server TTL reclaims it."""
    if not registry.remove(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Booking session {session_id} not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{session_id}/slots", response_model=SlotListResponse)
async def list_session_slots(
    session_id: str,
    refresh: bool = Query(False),
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    """
    List bookable slots for the session's event.
    Cached briefly in Redis; pass refresh=true to bypass the cache.
    """
    session = require_session(registry, session_id)
    max_quantity = session.flow.max_quantity

    if not refresh:
        cached = await get_cached_slots(session.event_id, session.session_id)
        if cached is not None:
            return SlotListResponse(slots=cached, max_quantity=max_quantity, cached=True)

    try:
        slots = await session.backend.list_available_slots(session.event_id)
    except BookingError as e:
        logger.error("slot_listing_failed", event_id=session.event_id, error=e.message)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    await set_cached_slots(
        session.event_id,
        session.session_id,
        [slot.model_dump(mode="json") for slot in slots],
    )
    return SlotListResponse(slots=slots, max_quantity=max_quantity, cached=False)


@router.post("/{session_id}/slot", response_model=BookingSessionResponse)
async def select_slot(
    session_id: str,
    payload: SelectSlotRequest,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    session = require_session(registry, session_id)
    await session.flow.select_slot(payload.slot, payload.quantity)
    if session.flow.lock_id:
        await invalidate_slot_cache(session.event_id)
    return _respond(session)


@router.patch("/{session_id}/form", response_model=BookingSessionResponse)
async def update_form(
    session_id: str,
    payload: FormUpdate,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    session = require_session(registry, session_id)
    session.flow.update_form_data(**payload.model_dump(exclude_none=True))
    return _respond(session)


@router.post("/{session_id}/confirm", response_model=BookingSessionResponse)
async def confirm_booking(
    session_id: str,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    session = require_session(registry, session_id)
    had_lock = session.flow.lock_id is not None
    await session.flow.confirm_booking()
    # Consumed or discarded either way, capacity moved
    if had_lock and session.flow.lock_id is None:
        await invalidate_slot_cache(session.event_id)
    return _respond(session)


@router.post("/{session_id}/cancel", response_model=BookingSessionResponse)
async def cancel_booking(
    session_id: str,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    session = require_session(registry, session_id)
    had_lock = session.flow.lock_id is not None
    await session.flow.cancel_booking()
    if had_lock:
        await invalidate_slot_cache(session.event_id)
    return _respond(session)


@router.post("/{session_id}/reset", response_model=BookingSessionResponse)
async def reset_booking(
    session_id: str,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    session = require_session(registry, session_id)
    session.flow.reset_booking()
    return _respond(session)


@router.post("/{session_id}/clear-error", response_model=BookingSessionResponse)
async def clear_error(
    session_id: str,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    session = require_session(registry, session_id)
    session.flow.clear_error()
    return _respond(session)


@router.post("/{session_id}/close", response_model=BookingSessionResponse)
async def close_booking(
    session_id: str,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    session = require_session(registry, session_id)
    session.flow.close()
    return _respond(session)


@router.post("/{session_id}/visibility", response_model=BookingSessionResponse)
async def visibility_changed(
    session_id: str,
    payload: VisibilityChange,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    """Report a tab visibility change; regaining visibility re-checks the hold."""
    session = require_session(registry, session_id)
    await session.guard.on_visibility_change(payload.visible)
    return _respond(session)


@router.post("/{session_id}/navigation", response_model=BookingSessionResponse)
async def navigation_changed(
    session_id: str,
    payload: NavigationEvent,
    registry: BookingSessionRegistry = Depends(get_session_registry),
):
    """Report a route change. Never touches the hold."""
    session = require_session(registry, session_id)
    session.guard.on_route_change(payload.path)
    return _respond(session)
