"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from slothold.api.routes import events, booking_sessions

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events.router)
api_router.include_router(booking_sessions.router)
