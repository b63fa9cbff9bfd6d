"""
Acceptance tests: HTTP surface

Rules:
  - Every metric endpoint answers with its JSON result shape, including when
    every data tier is down (provisional, low confidence).
  - Bad requests are 422; engine errors are 422 with a message, never 500.
  - ?trace=true wraps the result with the request's audit trail.
"""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from coinlens.config import EngineConfig
from coinlens.main import app, get_orchestrator
from coinlens.orchestrator.analytics_orchestrator import AnalyticsOrchestrator
from coinlens.services.data_source_resolver import DataSourceResolver
from coinlens.services.result_cache import InMemoryResultCache

START = date(2023, 1, 1)
AS_OF = START + timedelta(days=399)


@pytest.fixture
def client_factory(fake_provider):
    def build(series=None):
        tier = fake_provider("live", series, fail=series is None)
        orch = AnalyticsOrchestrator(
            config=EngineConfig(),
            resolver=DataSourceResolver([tier]),
            cache=InMemoryResultCache(),
            today=lambda: AS_OF,
        )
        app.dependency_overrides[get_orchestrator] = lambda: orch
        return TestClient(app)

    yield build
    app.dependency_overrides.clear()


def test_health(client_factory):
    """Acceptance: the health check answers ok."""
    assert client_factory().get("/health").json() == {"status": "ok"}


def test_beta_measured(client_factory, pair_series):
    """Acceptance: GET /beta returns the measured result for a known pair."""
    asset, bench = pair_series(400, beta=1.5)
    resp = client_factory({"ETH": asset, "BTC": bench}).get("/beta/eth")
    assert resp.status_code == 200
    body = resp.json()
    assert body["asset"] == "ETH"
    assert body["benchmark"] == "BTC"
    assert body["provisional"] is False
    assert body["beta_unadjusted"] == pytest.approx(1.5, abs=1e-6)


def test_beta_provisional_when_all_tiers_down(client_factory):
    """Acceptance: GET /beta still answers 200 when every tier is down."""
    resp = client_factory().get("/beta/SOL")
    assert resp.status_code == 200
    body = resp.json()
    assert body["provisional"] is True
    assert body["confidence"] == "low"
    assert body["beta"] == 1.5


def test_beta_with_trace(client_factory):
    """Acceptance: ?trace=true wraps the result with its decision trail."""
    resp = client_factory().get("/beta/SOL", params={"trace": "true"})
    body = resp.json()
    assert body["result"]["provisional"] is True
    stages = {e["stage"] for e in body["trace"]["events"]}
    assert {"cache", "resolve", "beta"} <= stages


def test_cagr_window_params(client_factory, pair_series):
    """Acceptance: since/until bound the CAGR period."""
    asset, _ = pair_series(400)
    resp = client_factory({"ADA": asset}).get(
        "/cagr/ADA", params={"since": "2023-01-01", "until": "2023-12-31"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["beginning_date"] == "2023-01-01"
    assert body["ending_date"] == "2023-12-31"
    assert body["total_days"] == 365


def test_cagr_inverted_window_is_422(client_factory):
    """Acceptance: an inverted CAGR period is a 422."""
    resp = client_factory().get("/cagr/ADA", params={"since": "2024-01-01", "until": "2023-01-01"})
    assert resp.status_code == 422


def test_npv_with_supplied_price(client_factory):
    """Acceptance: NPV runs on a supplied price when no history exists."""
    resp = client_factory().post("/npv/ETH", json={"investment": 1000, "horizon_years": 3, "current_price": 2500})
    assert resp.status_code == 200
    body = resp.json()
    assert body["provisional"] is True
    assert len(body["projected_prices"]) == 4
    assert body["cash_flows"][0] == -1000


def test_npv_validation(client_factory):
    """Acceptance: request validation rejects a zero horizon."""
    resp = client_factory().post("/npv/ETH", json={"investment": 1000, "horizon_years": 0})
    assert resp.status_code == 422


def test_npv_without_any_price_is_422_not_500(client_factory):
    """Acceptance: an engine data error maps to 422 with its error name."""
    resp = client_factory().post("/npv/ETH", json={"investment": 1000, "horizon_years": 3})
    assert resp.status_code == 422
    assert resp.json()["error"] == "InsufficientDataError"


def test_risk_scenario(client_factory):
    """Acceptance: the $50K / 40 % BTC portfolio gets a buy recommendation."""
    resp = client_factory().post("/risk", json={
        "holdings": [
            {"symbol": "BTC", "amount": 1, "price": 20000},
            {"symbol": "ETH", "amount": 10, "price": 3000},
        ],
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["analysis"]["recommended_btc_allocation_pct"] == 70
    assert body["analysis"]["risk_level"] == "high"
    assert body["analysis"]["rebalance_amount"] == pytest.approx(15000)
    assert body["recommendation"]["action"] == "buy_btc"


def test_clear_cache(client_factory):
    """Acceptance: DELETE /cache drops entries by prefix, then everything."""
    client = client_factory()
    client.get("/beta/SOL")
    client.get("/beta/ETH")
    resp = client.delete("/cache", params={"prefix": "beta:SOL"})
    assert resp.json()["removed"] == 1
    assert client.delete("/cache").json()["removed"] == 1
