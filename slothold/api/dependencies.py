"""
FastAPI dependencies resolving the services created at startup.
Tests override these to inject fakes.
"""

from fastapi import HTTPException, Request, status

from slothold.core.logging import bind_booking_session
from slothold.services.health_service import BookingSystemGuard
from slothold.services.interfaces.backend import BookingBackend
from slothold.services.session_registry import BookingSession, BookingSessionRegistry


def get_session_registry(request: Request) -> BookingSessionRegistry:
    return request.app.state.session_registry


def get_catalog_backend(request: Request) -> BookingBackend:
    """Session-less backend used for event reads."""
    return request.app.state.catalog_backend


def get_system_guard(request: Request) -> BookingSystemGuard:
    return request.app.state.system_guard


def require_session(registry: BookingSessionRegistry, session_id: str) -> BookingSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Booking session {session_id} not found",
        )
    bind_booking_session(session_id)
    return session
