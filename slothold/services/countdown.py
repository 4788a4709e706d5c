"""
Owned countdown timer for slot holds.

The timer is a scoped resource: the booking flow starts it on entering
fill-details and stops it on every exit, so a tick never runs against a lock
the flow no longer holds. Ticks are display-only; the server enforces expiry.
"""

import asyncio
import math
from datetime import datetime
from typing import Awaitable, Callable, Optional

from slothold.core.logging import get_logger

logger = get_logger(__name__)


def time_remaining(expires_at: Optional[datetime], now: datetime) -> int:
    """Whole seconds until `expires_at`, never negative."""
    if expires_at is None:
        return 0
    return max(0, math.floor((expires_at - now).total_seconds()))


def format_slot_time(start: datetime, end: datetime) -> str:
    """Display range for a slot, e.g. '09:00 AM - 09:30 AM'."""
    return f"{start.strftime('%I:%M %p')} - {end.strftime('%I:%M %p')}"


class CountdownTimer:
    """Calls `on_tick` every `interval` seconds until stopped."""

    def __init__(self, interval: float, on_tick: Callable[[], Awaitable[None]]) -> None:
        self.interval = interval
        self._on_tick = on_tick
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """(Re)start the timer. Must be called from inside a running event loop."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        # Stopping from inside a tick must not cancel the tick itself; the
        # loop notices it has been replaced and exits after the callback.
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            try:
                await self._on_tick()
            except Exception as e:
                logger.error("countdown_tick_failed", error=str(e))
