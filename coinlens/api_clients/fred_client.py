"""
FRED (St. Louis Fed) API client.

GET /fred/series/observations?series_id=SP500&file_type=json
    &observation_start=YYYY-MM-DD&observation_end=YYYY-MM-DD

Returns {"observations": [{"date": ..., "value": ...}]}; "." marks a
missing value (market holiday). Rate limit: 500 ms between requests.
"""

import logging
import os
from datetime import date
from typing import Any

import httpx

from coinlens.api_clients.http_gate import RequestGate, gated_get_json
from coinlens.errors import ProviderTimeoutError

logger = logging.getLogger(__name__)

PROVIDER = "FRED"
_BASE_URL: str = "https://api.stlouisfed.org/fred/series/observations"

_gate = RequestGate(PROVIDER, min_interval_s=0.5)


def _api_key() -> str:
    return os.environ.get("FRED_API_KEY", "")


async def fetch_series_observations(
    series_id: str,
    since: date,
    until: date,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> dict[str, Any]:
    key = _api_key()
    if not key:
        raise ProviderTimeoutError(PROVIDER, series_id, "FRED_API_KEY environment variable is not set")

    params = {
        "series_id": series_id,
        "api_key": key,
        "file_type": "json",
        "observation_start": since.isoformat(),
        "observation_end": until.isoformat(),
    }
    data = await gated_get_json(_gate, _BASE_URL, params, series_id, client=client, timeout=timeout)
    observations = data.get("observations") if isinstance(data, dict) else None
    if not observations:
        raise ProviderTimeoutError(PROVIDER, series_id, "no observations returned")

    logger.debug("[FRED] %s: %d observations", series_id, len(observations))
    return data
