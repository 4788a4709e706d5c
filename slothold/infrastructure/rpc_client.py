"""
HTTP client for the booking backend's RPC functions.
Speaks PostgREST conventions: functions at /rest/v1/rpc/<name>,
single-row table reads at /rest/v1/<table>?col=eq.value.
Separated from business logic for clean architecture.
"""

import time
from typing import Any, Optional

import httpx

from slothold.core.config import get_settings
from slothold.core.metrics import rpc_latency

SINGLE_OBJECT = "application/vnd.pgrst.object+json"


class RpcError(Exception):
    """The backend answered with an error payload."""

    def __init__(self, status_code: int, code: Optional[str], message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class RpcTransportError(Exception):
    """The backend could not be reached, or the call timed out."""


class RpcClient:
    """Thin async wrapper around httpx.AsyncClient with backend auth headers."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def call(self, function: str, params: dict[str, Any]) -> Any:
        """Invoke an RPC function and return its decoded JSON result."""
        start = time.perf_counter()
        try:
            response = await self._client.post(f"/rest/v1/rpc/{function}", json=params)
        except httpx.HTTPError as e:
            raise RpcTransportError(f"{function}: {e}") from e
        finally:
            rpc_latency.labels(function=function).observe(time.perf_counter() - start)
        return self._decode(response)

    async def select_one(self, table: str, column: str, value: str, columns: str = "*") -> dict:
        """Fetch exactly one row; a missing row surfaces as RpcError PGRST116."""
        try:
            response = await self._client.get(
                f"/rest/v1/{table}",
                params={"select": columns, column: f"eq.{value}"},
                headers={"Accept": SINGLE_OBJECT},
            )
        except httpx.HTTPError as e:
            raise RpcTransportError(f"{table}: {e}") from e
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise RpcError(
                status_code=response.status_code,
                code=body.get("code"),
                message=body.get("message") or response.reason_phrase or "Request failed",
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RpcTransportError("Backend returned a non-JSON payload") from e

    async def aclose(self) -> None:
        await self._client.aclose()


_rpc_client: Optional[RpcClient] = None


def get_rpc_client() -> RpcClient:
    """Get or create the shared RPC client."""
    global _rpc_client
    if _rpc_client is None:
        settings = get_settings()
        _rpc_client = RpcClient(
            base_url=settings.BOOKING_BACKEND_URL,
            api_key=settings.BOOKING_BACKEND_API_KEY,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )
    return _rpc_client


async def close_rpc_client() -> None:
    """Close the shared RPC client on shutdown."""
    global _rpc_client
    if _rpc_client:
        await _rpc_client.aclose()
        _rpc_client = None
