"""
Page-level pre-flight check for the booking backend.

Runs a single cheap RPC to tell "backend not deployed" apart from "backend
up". It is an early warning for the UI, not an authority: the backend
adapter still classifies every real call on its own. Results are cached so
repeated page loads do not hammer the backend.
"""

import time
from typing import Optional

from pydantic import BaseModel

from slothold.core.logging import get_logger
from slothold.infrastructure.rpc_client import RpcClient, RpcError, RpcTransportError
from slothold.services.rpc_backend import FUNCTION_NOT_FOUND

logger = get_logger(__name__)

NIL_EVENT_ID = "00000000-0000-0000-0000-000000000000"


class SystemHealth(BaseModel):
    is_healthy: bool
    error: Optional[str] = None
    missing_components: list[str] = []


class BookingSystemGuard:
    def __init__(self, client: RpcClient, cache_seconds: float = 60.0) -> None:
        self._client = client
        self.cache_seconds = cache_seconds
        self._cached: Optional[SystemHealth] = None
        self._checked_at = 0.0

    async def check(self) -> SystemHealth:
        if self._cached is not None and time.monotonic() - self._checked_at < self.cache_seconds:
            return self._cached

        health = SystemHealth(is_healthy=True)
        try:
            await self._client.call("get_available_slots", {
                "p_event_id": NIL_EVENT_ID,
                "p_session_id": "health-check",
            })
        except RpcError as e:
            # Any answer other than "no such function" means the RPCs are installed
            if e.code == FUNCTION_NOT_FOUND:
                health = SystemHealth(
                    is_healthy=False,
                    error="Booking system RPCs not installed. Please run database migrations.",
                    missing_components=["get_available_slots"],
                )
        except RpcTransportError as e:
            logger.error("booking_system_health_check_failed", error=str(e))
            health = SystemHealth(is_healthy=False, error=f"Booking system health check failed: {e}")

        self._cached = health
        self._checked_at = time.monotonic()
        return health

    def invalidate_cache(self) -> None:
        """Forget the last result, e.g. after migrations or a user-initiated retry."""
        self._cached = None
