"""
Event read endpoints. Events are owned elsewhere; these only read them.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from slothold.api.dependencies import get_catalog_backend
from slothold.schemas.booking import BookingEligibility
from slothold.schemas.event import EventSummary
from slothold.services.errors import BookingError, BookingValidationError
from slothold.services.interfaces.backend import BookingBackend
from slothold.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.get("/{id_or_slug}", response_model=EventSummary)
async def get_event_endpoint(
    id_or_slug: str,
    backend: BookingBackend = Depends(get_catalog_backend),
):
    """Get a single event by UUID or slug."""
    try:
        event = await backend.get_event(id_or_slug)
    except BookingError as e:
        logger.error("event_lookup_failed", event=id_or_slug, error=e.message)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {id_or_slug} not found",
        )
    return event


@router.get("/{event_id}/eligibility", response_model=BookingEligibility)
async def event_eligibility_endpoint(
    event_id: str,
    quantity: int = Query(1, ge=1),
    backend: BookingBackend = Depends(get_catalog_backend),
):
    """Pre-flight check: can `quantity` units of this event be booked at all?"""
    try:
        return await backend.can_book_event(event_id, quantity)
    except BookingValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except BookingError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
