"""
Tab visibility and navigation observer for an active booking.

Visibility regained while a hold is in fill-details triggers a read-only
server check. Route changes do nothing to the hold: a second tab, a transient
re-render or a feature-flagged route swap must never cost the user their
reservation. Holds end only on explicit cancel, confirmation or server TTL.
"""

from typing import Optional

from slothold.core.logging import get_logger
from slothold.schemas.booking import BookingStep
from slothold.services.booking_flow import BookingFlow

logger = get_logger(__name__)


class BookingRouteGuard:
    def __init__(self, flow: BookingFlow, visible: bool = True) -> None:
        self._flow = flow
        self._visible = visible
        self.last_path: Optional[str] = None

    @property
    def visible(self) -> bool:
        return self._visible

    async def on_visibility_change(self, visible: bool) -> None:
        was_visible, self._visible = self._visible, visible
        if was_visible or not visible:
            return
        if self._flow.lock_id and self._flow.step is BookingStep.FILL_DETAILS:
            logger.info("tab_visible_verifying_lock", lock_id=self._flow.lock_id)
            await self._flow.verify_lock_validity()

    def on_route_change(self, path: str) -> None:
        self.last_path = path
        logger.debug("route_changed", path=path, lock_id=self._flow.lock_id)
