"""
Glassnode API client.

Endpoints (daily resolution, i=24h, unix-second bounds s/u):
  market/price_usd_close               -> [{t, v}] close price in USD
  transactions/transfers_volume_sum    -> [{t, v}] on-chain transfer volume

Rate limiting: 1100 ms between requests via http_gate; a 429 fails the call.
"""

import logging
import os
from datetime import date, datetime, time, timezone
from typing import Any

import httpx

from coinlens.api_clients.http_gate import RequestGate, gated_get_json
from coinlens.errors import ProviderTimeoutError

logger = logging.getLogger(__name__)

PROVIDER = "Glassnode"
_BASE_URL: str = "https://api.glassnode.com/v1/metrics"
PRICE_METRIC = "market/price_usd_close"
VOLUME_METRIC = "transactions/transfers_volume_sum"

_gate = RequestGate(PROVIDER, min_interval_s=1.1)


def _api_key() -> str:
    return os.environ.get("GLASSNODE_API_KEY", "")


def _unix(d: date) -> int:
    return int(datetime.combine(d, time.min, tzinfo=timezone.utc).timestamp())


async def fetch_metric(
    metric: str,
    asset: str,
    since: date,
    until: date,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> list[dict[str, Any]]:
    """GET /v1/metrics/{metric}?a={asset}&i=24h&s=..&u=.. -> raw [{t, v}] list."""
    key = _api_key()
    if not key:
        raise ProviderTimeoutError(PROVIDER, asset, "GLASSNODE_API_KEY environment variable is not set")

    params = {
        "a": asset.upper(),
        "i": "24h",
        "s": str(_unix(since)),
        "u": str(_unix(until)),
        "api_key": key,
    }
    data = await gated_get_json(_gate, f"{_BASE_URL}/{metric}", params, asset, client=client, timeout=timeout)
    if not isinstance(data, list) or not data:
        raise ProviderTimeoutError(PROVIDER, asset, f"no data returned for {metric}")

    logger.debug("[Glassnode] %s %s: %d points", metric, asset, len(data))
    return data


async def fetch_prices(asset: str, since: date, until: date, client: httpx.AsyncClient | None = None,
                       timeout: float = 30.0) -> list[dict[str, Any]]:
    return await fetch_metric(PRICE_METRIC, asset, since, until, client=client, timeout=timeout)


async def fetch_volumes(asset: str, since: date, until: date, client: httpx.AsyncClient | None = None,
                        timeout: float = 30.0) -> list[dict[str, Any]]:
    return await fetch_metric(VOLUME_METRIC, asset, since, until, client=client, timeout=timeout)
