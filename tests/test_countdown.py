"""
Countdown timer and expiry reconciliation tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from slothold.schemas.booking import BookingStep, LockStatus
from slothold.services.booking_flow import BookingFlow
from slothold.services.countdown import CountdownTimer, format_slot_time, time_remaining
from slothold.services.errors import ErrorKind, NetworkError
from tests.conftest import NOW, wait_for


def test_time_remaining_floors_and_clamps():
    assert time_remaining(NOW + timedelta(seconds=90, milliseconds=900), NOW) == 90
    assert time_remaining(NOW - timedelta(seconds=5), NOW) == 0
    assert time_remaining(None, NOW) == 0


def test_format_slot_time():
    start = datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)
    assert format_slot_time(start, start + timedelta(minutes=30)) == "09:00 AM - 09:30 AM"
    assert format_slot_time(start.replace(hour=14), start.replace(hour=15)) == "02:00 PM - 03:00 PM"


@pytest.mark.asyncio
async def test_timer_ticks_until_stopped():
    ticks = []

    async def on_tick():
        ticks.append(1)

    timer = CountdownTimer(0.01, on_tick)
    timer.start()
    assert timer.running

    await wait_for(lambda: len(ticks) >= 3)
    timer.stop()
    seen = len(ticks)
    await asyncio.sleep(0.05)

    assert not timer.running
    assert len(ticks) == seen


@pytest.mark.asyncio
async def test_stop_inside_tick_lets_tick_finish():
    finished = []
    timer = None

    async def on_tick():
        timer.stop()
        await asyncio.sleep(0)
        finished.append(True)

    timer = CountdownTimer(0.01, on_tick)
    timer.start()

    await wait_for(lambda: finished)
    await asyncio.sleep(0.05)

    assert finished == [True]
    assert not timer.running


@pytest.mark.asyncio
async def test_failing_tick_does_not_kill_timer():
    calls = []

    async def on_tick():
        calls.append(1)
        raise RuntimeError("render failed")

    timer = CountdownTimer(0.01, on_tick)
    timer.start()
    await wait_for(lambda: len(calls) >= 2)

    assert timer.running
    timer.stop()


@pytest_asyncio.fixture
async def ticking_flow(backend, clock, slot):
    """Held flow whose countdown ticks every 10ms."""
    booking_flow = BookingFlow(backend, clock=clock, countdown_interval=0.01, max_quantity=10)
    await booking_flow.select_slot(slot, 1)
    yield booking_flow
    booking_flow.dispose()


@pytest.mark.asyncio
async def test_tick_follows_clock(ticking_flow, clock):
    clock.advance(seconds=45)

    await wait_for(lambda: ticking_flow.time_remaining == 555)

    assert ticking_flow.countdown_running


@pytest.mark.asyncio
async def test_countdown_zero_asks_server_before_expiring(ticking_flow, backend, clock):
    """At zero the server is asked; a dead hold surfaces LOCK_EXPIRED but stays put."""
    clock.advance(minutes=10)

    await wait_for(lambda: ticking_flow.error_kind is ErrorKind.LOCK_EXPIRED)

    assert backend.calls_to("verify") == [("verify", "lock-1")]
    assert ticking_flow.error == "Your reservation has expired. Please select a new slot."
    assert ticking_flow.step is BookingStep.FILL_DETAILS
    assert ticking_flow.lock_id == "lock-1"
    assert ticking_flow.lock_presumed_expired
    assert ticking_flow.time_remaining == 0
    assert not ticking_flow.countdown_running
    assert backend.calls_to("release") == []


@pytest.mark.asyncio
async def test_countdown_zero_resyncs_to_server_expiry(ticking_flow, backend, clock):
    """Server says the hold still has five minutes: adopt its clock and keep counting."""
    clock.advance(minutes=10)
    later = clock() + timedelta(minutes=5)
    backend.verify_result = LockStatus(valid=True, expires_at=later, remaining=timedelta(minutes=5))

    await wait_for(lambda: ticking_flow.time_remaining == 300)

    assert ticking_flow.lock_expires_at == later
    assert ticking_flow.error is None
    assert not ticking_flow.lock_presumed_expired
    assert ticking_flow.countdown_running
    await asyncio.sleep(0.05)
    assert len(backend.calls_to("verify")) == 1


@pytest.mark.asyncio
async def test_countdown_zero_with_unreachable_server(ticking_flow, backend, clock):
    backend.fail_next["verify"] = NetworkError("Failed to verify reservation")
    clock.advance(minutes=10)

    await wait_for(lambda: ticking_flow.error_kind is ErrorKind.NETWORK_ERROR)

    assert ticking_flow.error == "Unable to verify reservation status. Please try again."
    assert ticking_flow.lock_presumed_expired
    assert ticking_flow.step is BookingStep.FILL_DETAILS


@pytest.mark.asyncio
async def test_confirm_after_countdown_expiry_stays_local(ticking_flow, backend, clock):
    ticking_flow.update_form_data(first_name="Ada", last_name="Lovelace", email="ada@example.com")
    clock.advance(minutes=10)
    await wait_for(lambda: ticking_flow.error_kind is ErrorKind.LOCK_EXPIRED)

    await ticking_flow.confirm_booking()

    assert backend.calls_to("confirm") == []
    assert ticking_flow.step is BookingStep.SELECT_SLOT
    assert ticking_flow.lock_id is None
    assert ticking_flow.form_data.first_name == "Ada"


@pytest.mark.asyncio
async def test_cancel_stops_countdown(ticking_flow):
    await ticking_flow.cancel_booking()

    assert not ticking_flow.countdown_running
    assert ticking_flow.time_remaining == 0


@pytest.mark.asyncio
async def test_dispose_stops_countdown_but_keeps_hold(ticking_flow, backend):
    ticking_flow.dispose()

    assert not ticking_flow.countdown_running
    assert ticking_flow.lock_id == "lock-1"
    assert backend.calls_to("release") == []
