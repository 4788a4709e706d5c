"""
Tests for the booking system pre-flight check and the /health endpoint.
"""

import httpx
import pytest
from httpx import AsyncClient

from slothold.infrastructure.rpc_client import RpcClient
from slothold.services.health_service import BookingSystemGuard, SystemHealth


def counting_transport(status_code: int = 200, code=None, counter=None, fail: bool = False):
    def handler(request: httpx.Request) -> httpx.Response:
        if counter is not None:
            counter.append(request)
        if fail:
            raise httpx.ConnectTimeout("timed out", request=request)
        if code is None:
            return httpx.Response(status_code, json=[])
        return httpx.Response(status_code, json={"code": code, "message": "probe"})

    return httpx.MockTransport(handler)


async def check_with(transport) -> SystemHealth:
    client = RpcClient("http://backend.test", transport=transport)
    try:
        return await BookingSystemGuard(client).check()
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_missing_rpcs_are_unhealthy():
    health = await check_with(counting_transport(404, code="PGRST202"))

    assert not health.is_healthy
    assert health.missing_components == ["get_available_slots"]
    assert "migrations" in health.error


@pytest.mark.asyncio
async def test_other_rpc_errors_mean_installed():
    """The probe uses a nil event id, so a data error still proves the function exists."""
    health = await check_with(counting_transport(400, code="22P02"))

    assert health.is_healthy
    assert health.error is None


@pytest.mark.asyncio
async def test_successful_probe_is_healthy():
    health = await check_with(counting_transport(200))

    assert health.is_healthy


@pytest.mark.asyncio
async def test_unreachable_backend_is_unhealthy():
    health = await check_with(counting_transport(fail=True))

    assert not health.is_healthy
    assert health.error.startswith("Booking system health check failed")


@pytest.mark.asyncio
async def test_result_is_cached_until_invalidated():
    requests = []
    client = RpcClient("http://backend.test", transport=counting_transport(200, counter=requests))
    guard = BookingSystemGuard(client, cache_seconds=60)

    await guard.check()
    await guard.check()
    assert len(requests) == 1

    guard.invalidate_cache()
    await guard.check()
    assert len(requests) == 2

    await client.aclose()


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["booking_system"]["is_healthy"] is True
    assert data["cache"] == {"status": "disabled"}


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient):
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "slot_lock_operations_total" in response.text
