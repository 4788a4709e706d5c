"""
In-memory registry of booking sessions served by the API.
Each session owns its backend (and so its server-side session id), its flow
and its visibility guard.

Users who walk away never delete their session, so sessions untouched for
SESSION_IDLE_SECONDS are evicted on the next create/get. Eviction disposes
the flow's countdown and leaves any hold to the server TTL.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from slothold.core.config import get_settings
from slothold.core.logging import get_logger
from slothold.core.metrics import active_sessions
from slothold.services.booking_flow import BookingFlow
from slothold.services.interfaces.backend import BookingBackend
from slothold.services.rpc_backend import new_session_id
from slothold.services.visibility import BookingRouteGuard

logger = get_logger(__name__)


@dataclass
class BookingSession:
    session_id: str
    event_id: str
    backend: BookingBackend
    flow: BookingFlow
    guard: BookingRouteGuard
    last_seen: float = 0.0


class BookingSessionRegistry:
    def __init__(
        self,
        backend_factory: Callable[[str], BookingBackend],
        idle_seconds: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
        **flow_options,
    ) -> None:
        self._backend_factory = backend_factory
        self.idle_seconds = idle_seconds or get_settings().SESSION_IDLE_SECONDS
        self._monotonic = monotonic
        self._flow_options = flow_options
        self._sessions: dict[str, BookingSession] = {}

    def create(self, event_id: str) -> BookingSession:
        self.evict_idle()
        session_id = new_session_id()
        backend = self._backend_factory(session_id)
        flow = BookingFlow(backend, **self._flow_options)
        session = BookingSession(
            session_id=session_id,
            event_id=event_id,
            backend=backend,
            flow=flow,
            guard=BookingRouteGuard(flow),
            last_seen=self._monotonic(),
        )
        self._sessions[session_id] = session
        active_sessions.inc()
        logger.info("booking_session_created", session_id=session_id, event_id=event_id)
        return session

    def get(self, session_id: str) -> Optional[BookingSession]:
        self.evict_idle()
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_seen = self._monotonic()
        return session

    def remove(self, session_id: str) -> bool:
        """Forget a session. Its hold, if any, is left to the server TTL."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.flow.dispose()
        active_sessions.dec()
        logger.info("booking_session_removed", session_id=session_id, lock_id=session.flow.lock_id)
        return True

    def evict_idle(self) -> int:
        cutoff = self._monotonic() - self.idle_seconds
        idle = [sid for sid, session in self._sessions.items() if session.last_seen < cutoff]
        for session_id in idle:
            logger.info("booking_session_idle", session_id=session_id)
            self.remove(session_id)
        return len(idle)

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.remove(session_id)

    def __len__(self) -> int:
        return len(self._sessions)
