"""
Acceptance tests: live market data gateway

Rules:
  - SP500 is served by FRED, every other symbol by Glassnode.
  - Provider errors, timeouts and empty payloads come back as Failure, never raised.
  - A volume failure keeps the price series with zero volume and a warning.
  - One request per endpoint per fetch: 429s, error statuses and transport errors are not retried inside the tier.
  - since >= until is a caller error (ValueError).
"""

import asyncio
from datetime import date, datetime, timezone

import httpx
import pytest

from coinlens.api_clients import fred_client, glassnode_client
from coinlens.api_clients.http_gate import RequestGate
from coinlens.errors import ProviderTimeoutError
from coinlens.services.market_data_gateway import MarketDataGateway
from coinlens.services.types import Failure, Series

SINCE = date(2024, 1, 1)
UNTIL = date(2024, 1, 10)


def _ts(d: date) -> int:
    return int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp())


@pytest.fixture(autouse=True)
def fast_gates(monkeypatch):
    monkeypatch.setattr(glassnode_client, "_gate", RequestGate("Glassnode", 0.0))
    monkeypatch.setattr(fred_client, "_gate", RequestGate("FRED", 0.0))
    monkeypatch.setenv("GLASSNODE_API_KEY", "test-key")
    monkeypatch.setenv("FRED_API_KEY", "test-key")


def _run(handler, symbol, since=SINCE, until=UNTIL, timeout=5.0):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            gateway = MarketDataGateway(timeout_seconds=timeout, client=client)
            return await gateway.fetch(symbol, since, until)
    return asyncio.run(go())


def _glassnode_payload():
    return [{"t": _ts(date(2024, 1, d)), "v": 100.0 + d} for d in range(1, 6)]


# ---------------------------------------------------------------------------
# Glassnode
# ---------------------------------------------------------------------------

def test_glassnode_price_and_volume_merged():
    """Acceptance: Glassnode price and volume are merged by date."""
    seen = []

    def handler(request: httpx.Request):
        seen.append(request.url)
        if request.url.path.endswith("price_usd_close"):
            return httpx.Response(200, json=_glassnode_payload())
        return httpx.Response(200, json=[{"t": _ts(date(2024, 1, 1)), "v": 5e9}])

    result = _run(handler, "eth")
    assert isinstance(result, Series)
    assert result.symbol == "ETH"
    assert result.source == "Glassnode"
    assert len(result) == 5
    assert result.points[0].volume == 5e9
    assert result.points[1].volume == 0.0
    assert all(u.params["a"] == "ETH" and u.params["i"] == "24h" for u in seen)


def test_glassnode_volume_failure_degrades_to_zero_volume():
    """Acceptance: a volume failure keeps prices with zero volume and a warning."""
    def handler(request: httpx.Request):
        if request.url.path.endswith("price_usd_close"):
            return httpx.Response(200, json=_glassnode_payload())
        return httpx.Response(500)

    result = _run(handler, "BTC")
    assert isinstance(result, Series)
    assert all(p.volume == 0.0 for p in result.points)
    assert result.warnings and "volume unavailable" in result.warnings[0]


def test_glassnode_price_failure_is_failure():
    """Acceptance: a price failure is a Failure carrying the provider error."""
    def handler(request: httpx.Request):
        return httpx.Response(401)

    result = _run(handler, "BTC")
    assert isinstance(result, Failure)
    assert result.source == "Glassnode"
    assert isinstance(result.error, ProviderTimeoutError)


def test_rate_limited_is_failure_without_retry():
    """Acceptance: a 429 fails the fetch after a single request per endpoint."""
    calls = []

    def handler(request: httpx.Request):
        calls.append(request.url.path)
        return httpx.Response(429)

    result = _run(handler, "BTC")
    assert isinstance(result, Failure)
    assert "rate limited" in result.reason
    assert calls.count("/v1/metrics/market/price_usd_close") == 1
    assert calls.count("/v1/metrics/transactions/transfers_volume_sum") == 1


def test_connection_error_is_failure_without_retry():
    """Acceptance: a transport error fails the fetch after a single request per endpoint."""
    calls = []

    def handler(request: httpx.Request):
        calls.append(request.url.path)
        raise httpx.ConnectError("connection refused", request=request)

    result = _run(handler, "ETH")
    assert isinstance(result, Failure)
    assert "transport error" in result.reason
    assert calls.count("/v1/metrics/market/price_usd_close") == 1
    assert calls.count("/v1/metrics/transactions/transfers_volume_sum") == 1


def test_fred_error_is_failure_without_retry():
    """Acceptance: a FRED error status fails the fetch after one request."""
    calls = []

    def handler(request: httpx.Request):
        calls.append(request.url.path)
        return httpx.Response(503)

    result = _run(handler, "SP500")
    assert isinstance(result, Failure)
    assert result.source == "FRED"
    assert len(calls) == 1


def test_empty_payload_is_failure():
    """Acceptance: an empty payload is a Failure."""
    result = _run(lambda request: httpx.Response(200, json=[]), "SOL")
    assert isinstance(result, Failure)


def test_missing_api_key_is_failure(monkeypatch):
    """Acceptance: a missing API key is a Failure naming the variable."""
    monkeypatch.delenv("GLASSNODE_API_KEY")
    result = _run(lambda request: httpx.Response(200, json=_glassnode_payload()), "BTC")
    assert isinstance(result, Failure)
    assert "GLASSNODE_API_KEY" in result.reason


def test_slow_provider_times_out_as_failure():
    """Acceptance: a provider slower than the timeout is a Failure."""
    async def handler(request: httpx.Request):
        await asyncio.sleep(1.0)
        return httpx.Response(200, json=_glassnode_payload())

    result = _run(handler, "BTC", timeout=0.05)
    assert isinstance(result, Failure)
    assert "timed out" in result.reason


# ---------------------------------------------------------------------------
# FRED
# ---------------------------------------------------------------------------

def test_sp500_routed_to_fred():
    """Acceptance: SP500 is fetched from FRED and "." values are skipped."""
    def handler(request: httpx.Request):
        assert request.url.host == "api.stlouisfed.org"
        assert request.url.params["series_id"] == "SP500"
        assert request.url.params["observation_start"] == "2024-01-01"
        return httpx.Response(200, json={"observations": [
            {"date": "2024-01-01", "value": "."},
            {"date": "2024-01-02", "value": "4742.83"},
            {"date": "2024-01-03", "value": "4704.81"},
        ]})

    result = _run(handler, "SP500")
    assert isinstance(result, Series)
    assert result.source == "FRED"
    assert len(result) == 2


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------

def test_inverted_range_raises():
    """Acceptance: an inverted range raises ValueError before any request."""
    with pytest.raises(ValueError):
        _run(lambda request: httpx.Response(200, json=[]), "BTC", since=UNTIL, until=SINCE)
