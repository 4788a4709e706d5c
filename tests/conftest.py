"""
Pytest fixtures: a controllable clock, an in-memory booking backend that
plays the server authority, booking flows, and an API client wired to them.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

# Must be set before slothold reads its settings
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from slothold.api.dependencies import get_catalog_backend, get_session_registry, get_system_guard
from slothold.infrastructure.rpc_client import RpcClient
from slothold.main import app
from slothold.schemas.booking import (
    BookingEligibility,
    BookingFormData,
    ConfirmedBooking,
    LockHold,
    LockStatus,
    Slot,
)
from slothold.schemas.event import EventSummary
from slothold.services.booking_flow import BookingFlow
from slothold.services.errors import BookingError, CapacityConflictError, LockExpiredError
from slothold.services.health_service import BookingSystemGuard
from slothold.services.interfaces.backend import BookingBackend
from slothold.services.session_registry import BookingSessionRegistry

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
SLOT_START = datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_slot(slot_id: str = "s1", available: int = 5, total: int = 5, price: str = "25.00") -> Slot:
    return Slot(
        slot_id=slot_id,
        start_time=SLOT_START,
        end_time=SLOT_START + timedelta(minutes=30),
        total_capacity=total,
        available_count=available,
        price=Decimal(price),
    )


class FakeBookingBackend(BookingBackend):
    """
    In-memory server authority.

    - `fail_next[op] = error` makes the next call of `op` raise
    - `gates[op] = asyncio.Event()` parks calls of `op` until the event is set
    - `verify_result` overrides what verify_lock answers
    """

    def __init__(self, clock: FakeClock, ttl: timedelta = timedelta(minutes=10)) -> None:
        self.clock = clock
        self.ttl = ttl
        self.capacity: dict[str, int] = {}
        self.totals: dict[str, int] = {}
        self.locks: dict[str, dict] = {}
        self.events: dict[str, EventSummary] = {}
        self.calls: list[tuple] = []
        self.fail_next: dict[str, BookingError] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.verify_result: Optional[LockStatus] = None
        self._seq = 0

    def add_slot(self, slot_id: str = "s1", available: int = 5, total: int = 5) -> Slot:
        self.capacity[slot_id] = available
        self.totals[slot_id] = total
        return make_slot(slot_id, available, total)

    def calls_to(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def _held(self, slot_id: str) -> int:
        return sum(
            lock["quantity"]
            for lock in self.locks.values()
            if lock["slot_id"] == slot_id and lock["active"] and lock["expires_at"] > self.clock()
        )

    async def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        error = self.fail_next.pop(operation, None)
        if error is not None:
            raise error

    async def acquire_lock(self, slot_id: str, quantity: int) -> LockHold:
        await self._enter("acquire", slot_id, quantity)
        remaining = self.capacity[slot_id] - self._held(slot_id)
        if remaining < quantity:
            raise CapacityConflictError(f"Insufficient slots available. Only {remaining} slot(s) remaining.")
        self._seq += 1
        lock_id = f"lock-{self._seq}"
        expires_at = self.clock() + self.ttl
        self.locks[lock_id] = {
            "slot_id": slot_id,
            "quantity": quantity,
            "expires_at": expires_at,
            "active": True,
        }
        return LockHold(lock_id=lock_id, slot_id=slot_id, quantity=quantity, expires_at=expires_at)

    async def verify_lock(self, lock_id: str) -> LockStatus:
        await self._enter("verify", lock_id)
        if self.verify_result is not None:
            return self.verify_result
        lock = self.locks.get(lock_id)
        if lock is None:
            return LockStatus(valid=False, reason="Lock not found")
        if not lock["active"]:
            return LockStatus(valid=False, reason="Lock has been released", expires_at=lock["expires_at"])
        if lock["expires_at"] <= self.clock():
            return LockStatus(valid=False, reason="Lock has expired", expires_at=lock["expires_at"])
        return LockStatus(
            valid=True,
            reason="Lock is valid",
            expires_at=lock["expires_at"],
            remaining=lock["expires_at"] - self.clock(),
        )

    async def confirm_booking(self, lock_id: str, form: BookingFormData) -> ConfirmedBooking:
        await self._enter("confirm", lock_id, form)
        lock = self.locks.get(lock_id)
        if lock is None or not lock["active"] or lock["expires_at"] <= self.clock():
            raise LockExpiredError("Your reservation has expired. Please select a new time slot.")
        lock["active"] = False
        self.capacity[lock["slot_id"]] -= lock["quantity"]
        return ConfirmedBooking(
            booking_reference=f"REF{self._seq:05d}",
            first_name=form.first_name,
            last_name=form.last_name,
            email=form.email,
            phone=form.phone,
            date=SLOT_START.date().isoformat(),
            time=SLOT_START.time().isoformat(),
            status="confirmed",
            slot_id=lock["slot_id"],
        )

    async def release_lock(self, lock_id: str) -> bool:
        await self._enter("release", lock_id)
        lock = self.locks.get(lock_id)
        if lock is None or not lock["active"]:
            return False
        lock["active"] = False
        return True

    async def list_available_slots(self, event_id: str) -> list[Slot]:
        await self._enter("list", event_id)
        return [
            make_slot(slot_id, max(0, available - self._held(slot_id)), self.totals[slot_id])
            for slot_id, available in self.capacity.items()
            if available > 0
        ]

    async def get_event(self, id_or_slug: str) -> Optional[EventSummary]:
        await self._enter("get_event", id_or_slug)
        for event in self.events.values():
            if id_or_slug in (event.id, event.slug):
                return event
        return None

    async def can_book_event(self, event_id: str, quantity: int) -> BookingEligibility:
        await self._enter("can_book", event_id, quantity)
        open_slots = sum(1 for slot_id in self.capacity if self.capacity[slot_id] - self._held(slot_id) >= quantity)
        if not open_slots:
            return BookingEligibility(can_book=False, reason="No available slots")
        return BookingEligibility(can_book=True, available_slots=open_slots)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll until `predicate()` holds; lets background tasks run in between."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> FakeBookingBackend:
    fake = FakeBookingBackend(clock)
    fake.add_slot("s1", available=5, total=5)
    fake.events["evt-1"] = EventSummary(id="evt-1", slug="intro-call", title="Intro Call", duration=30)
    return fake


@pytest.fixture
def slot() -> Slot:
    return make_slot("s1", available=5, total=5)


@pytest_asyncio.fixture
async def flow(backend: FakeBookingBackend, clock: FakeClock) -> AsyncGenerator[BookingFlow, None]:
    """Flow with a countdown too slow to tick during a test."""
    booking_flow = BookingFlow(backend, clock=clock, countdown_interval=3600, max_quantity=10)
    yield booking_flow
    booking_flow.dispose()


@pytest_asyncio.fixture
async def held_flow(flow: BookingFlow, slot: Slot) -> BookingFlow:
    """Flow already in fill-details with a 10 minute hold on s1."""
    await flow.select_slot(slot, 2)
    return flow


def health_transport(code: Optional[str] = None, status_code: int = 400) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"code": code, "message": "probe"})

    return httpx.MockTransport(handler)


@pytest_asyncio.fixture
async def registry(backend: FakeBookingBackend, clock: FakeClock) -> AsyncGenerator[BookingSessionRegistry, None]:
    session_registry = BookingSessionRegistry(
        lambda session_id: backend,
        clock=clock,
        countdown_interval=3600,
        max_quantity=10,
    )
    yield session_registry
    session_registry.close_all()


@pytest_asyncio.fixture
async def client(
    registry: BookingSessionRegistry,
    backend: FakeBookingBackend,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the booking services replaced by in-memory fakes."""
    rpc_client = RpcClient("http://backend.test", transport=health_transport("22P02"))
    guard = BookingSystemGuard(rpc_client, cache_seconds=60)

    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_catalog_backend] = lambda: backend
    app.dependency_overrides[get_system_guard] = lambda: guard

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await rpc_client.aclose()
