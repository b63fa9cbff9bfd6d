"""
Rate-gated JSON GET shared by the provider clients.

Rate limiting:
  min_interval_s between requests per gate (enforced across all callers)

One attempt per call. A 429, any other non-success status, a transport error,
a timeout or a non-JSON body ends as a ProviderTimeoutError so the data tier
can be abandoned as a whole; falling back is the resolver's job.
"""

import asyncio
import logging
import time
from typing import Any

import httpx

from coinlens.errors import ProviderTimeoutError

logger = logging.getLogger(__name__)


class RequestGate:
    def __init__(self, provider: str, min_interval_s: float):
        self.provider = provider
        self.min_interval_s = min_interval_s
        self._last_request_s: float = 0.0
        self._lock: asyncio.Lock | None = None

    async def wait_turn(self) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            lag = time.monotonic() - self._last_request_s
            if lag < self.min_interval_s:
                await asyncio.sleep(self.min_interval_s - lag)
            self._last_request_s = time.monotonic()


async def gated_get_json(
    gate: RequestGate,
    url: str,
    params: dict[str, Any],
    symbol: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> Any:
    """GET url with params through the gate. Returns parsed JSON."""
    provider = gate.provider
    await gate.wait_turn()
    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                resp = await own_client.get(url, params=params, timeout=timeout)
        else:
            resp = await client.get(url, params=params, timeout=timeout)
    except httpx.TimeoutException as exc:
        logger.warning("[%s] timeout for %s", provider, symbol)
        raise ProviderTimeoutError(provider, symbol, "request timed out") from exc
    except httpx.HTTPError as exc:
        logger.warning("[%s] request failed for %s: %s", provider, symbol, exc)
        raise ProviderTimeoutError(provider, symbol, f"transport error: {exc}") from exc

    if resp.status_code == 429:
        logger.warning("[%s][429] rate limited for %s", provider, symbol)
        raise ProviderTimeoutError(provider, symbol, "rate limited (HTTP 429)")

    if not resp.is_success:
        raise ProviderTimeoutError(provider, symbol, f"HTTP {resp.status_code}: {resp.reason_phrase}")

    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderTimeoutError(provider, symbol, "response body is not JSON") from exc
