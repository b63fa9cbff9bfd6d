"""
Acceptance tests: end-to-end analytics requests

Rules:
  - Live failure -> result computed from the persisted tier, tagged "persisted".
  - Live and persisted failure -> provisional result, low confidence, no exception.
  - Statistical impossibilities (zero variance) -> provisional result.
  - Results are cached per (metric, asset, benchmark, as_of).
  - A concurrent request for the same key joins the running computation; cancelling
    every caller cancels the provider fetches.
  - NPV uses the expected market return when the benchmark CAGR is provisional.
"""

import asyncio
from datetime import date, timedelta

import pytest

from coinlens.config import EngineConfig
from coinlens.errors import InsufficientDataError
from coinlens.orchestrator.analytics_orchestrator import AnalyticsOrchestrator
from coinlens.services.analysis_trace import AnalysisTrace
from coinlens.services.data_source_resolver import DataSourceResolver
from coinlens.services.result_cache import InMemoryResultCache
from coinlens.services.types import Holding, PricePoint

START = date(2023, 1, 1)
AS_OF = START + timedelta(days=399)


def _orchestrator(tiers, **config):
    return AnalyticsOrchestrator(
        config=EngineConfig(**config),
        resolver=DataSourceResolver(tiers),
        cache=InMemoryResultCache(),
        today=lambda: AS_OF,
    )


def test_live_failure_uses_persisted_tier(pair_series, fake_provider):
    """Acceptance: a live outage is answered from persisted history, tagged "persisted"."""
    asset, bench = pair_series(400, beta=1.5)
    live = fake_provider("live", fail=True)
    persisted = fake_provider("persisted", {"ETH": asset, "BTC": bench})
    orch = _orchestrator([live, persisted])

    trace = AnalysisTrace("beta", "ETH")
    result = asyncio.run(orch.calculate_beta("ETH", trace=trace))

    assert result.provisional is False
    assert result.data_source == "persisted"
    assert result.benchmark == "BTC"
    assert result.beta_unadjusted == pytest.approx(1.5, abs=1e-6)
    assert any(e["decision"] == "measured" for e in trace.decisions("beta"))


def test_every_tier_failing_is_provisional(fake_provider):
    """Acceptance: no data anywhere gives the sector beta, provisional and low confidence."""
    orch = _orchestrator([fake_provider("live", fail=True), fake_provider("persisted", fail=True)])
    result = asyncio.run(orch.calculate_beta("ETH"))
    assert result.provisional is True
    assert result.confidence == "low"
    assert result.beta == 1.1
    assert result.data_points == 0


def test_zero_variance_benchmark_is_provisional(pair_series, fake_provider):
    """Acceptance: a flat benchmark degrades to a provisional beta instead of raising."""
    asset, _ = pair_series(400)
    flat = [PricePoint(p.date, 40_000.0) for p in asset]
    orch = _orchestrator([fake_provider("live", {"ETH": asset, "BTC": flat})])
    trace = AnalysisTrace("beta", "ETH")
    result = asyncio.run(orch.calculate_beta("ETH", trace=trace))
    assert result.provisional is True
    assert any("variance" in w.lower() for w in result.warnings)
    assert trace.status == "degraded"


def test_too_few_aligned_points_is_provisional(pair_series, fake_provider):
    """Acceptance: series that barely overlap fall back to the sector estimate."""
    asset, bench = pair_series(400)
    # both legs long enough on their own, but they only overlap for 10 days
    orch = _orchestrator([fake_provider("live", {"ETH": asset[:200], "BTC": bench[190:]})])
    result = asyncio.run(orch.calculate_beta("ETH"))
    assert result.provisional is True


def test_beta_cached_per_key(pair_series, fake_provider):
    """Acceptance: a repeated request is served from cache without refetching."""
    asset, bench = pair_series(400)
    live = fake_provider("live", {"ETH": asset, "BTC": bench})
    orch = _orchestrator([live])

    async def twice():
        return await orch.calculate_beta("ETH"), await orch.calculate_beta("eth")

    first, second = asyncio.run(twice())
    assert first == second
    assert live.calls == ["ETH", "BTC"]
    assert orch.invalidate(prefix="beta:ETH") == 1


def test_concurrent_request_joins_in_flight_beta(pair_series, fake_provider):
    """Acceptance: a second concurrent request joins the first and says so on its trace."""
    asset, bench = pair_series(400)
    live = fake_provider("live", {"ETH": asset, "BTC": bench})
    orch = _orchestrator([live])
    first_trace = AnalysisTrace("beta", "ETH")
    second_trace = AnalysisTrace("beta", "ETH")

    async def both():
        return await asyncio.gather(
            orch.calculate_beta("ETH", trace=first_trace),
            orch.calculate_beta("ETH", trace=second_trace),
        )

    first, second = asyncio.run(both())
    assert first == second
    assert live.calls == ["ETH", "BTC"]
    assert [e["decision"] for e in second_trace.decisions("cache")] == ["lookup", "joined_in_flight"]
    assert second_trace.decisions("resolve") == []
    assert [e["decision"] for e in first_trace.decisions("cache")] == ["lookup"]
    assert first_trace.decisions("resolve")


class BlockingProvider:
    """Live tier whose fetches park until released, noting cancellation."""

    name = "blocking-live"
    tier = "live"

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = asyncio.Event()

    async def fetch(self, symbol, since, until):
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        raise AssertionError("fetch was never meant to complete")


def test_cancelling_request_cancels_provider_fetches():
    """Acceptance: cancelling the only caller cancels the fetches behind it."""

    async def go():
        provider = BlockingProvider()
        orch = _orchestrator([provider])
        outer = asyncio.ensure_future(orch.calculate_beta("ETH"))
        await asyncio.wait_for(provider.started.wait(), 1.0)
        outer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await outer
        await asyncio.wait_for(provider.cancelled.wait(), 1.0)
        await asyncio.sleep(0.01)
        return orch.cache.in_flight()

    assert asyncio.run(go()) == 0


def test_cagr_from_persisted_tier(pair_series, fake_provider):
    """Acceptance: CAGR is measured from persisted history when live data is down."""
    asset, _ = pair_series(400)
    orch = _orchestrator([fake_provider("live", fail=True), fake_provider("persisted", {"SOL": asset})])
    result = asyncio.run(orch.calculate_cagr("SOL"))
    assert result.provisional is False
    assert result.data_source == "persisted"
    assert result.beginning_price == asset[0].price
    assert result.ending_price == asset[-1].price


def test_cagr_without_data_is_sector_estimate(fake_provider):
    """Acceptance: CAGR with no data is the provisional sector estimate."""
    orch = _orchestrator([fake_provider("live", fail=True)])
    result = asyncio.run(orch.calculate_cagr("BTC"))
    assert result.provisional is True
    assert result.cagr == 0.25


def test_npv_end_to_end(pair_series, fake_provider):
    """Acceptance: NPV combines measured beta, asset CAGR and benchmark CAGR."""
    asset, bench = pair_series(400, beta=1.2)
    orch = _orchestrator([fake_provider("live", {"ETH": asset, "BTC": bench})])
    result = asyncio.run(orch.calculate_npv("ETH", investment=10_000.0, horizon_years=5))
    assert result.provisional is False
    assert result.current_price == asset[-1].price
    assert len(result.projected_prices) == 6
    assert result.cash_flows[0] == -10_000.0
    expected = (bench[-1].price / bench[0].price) ** (365.25 / 400) - 1
    assert result.benchmark_cagr == pytest.approx(expected)


def test_npv_without_data_uses_expected_market_return(fake_provider):
    """Acceptance: a provisional benchmark CAGR is replaced by the expected market return."""
    orch = _orchestrator([fake_provider("live", fail=True)])
    result = asyncio.run(orch.calculate_npv("ETH", investment=1_000.0, horizon_years=3, current_price=2_500.0))
    assert result.provisional is True
    assert result.confidence == "low"
    assert result.benchmark_cagr == 0.15
    assert result.beta == 1.1
    assert result.discount_rate == pytest.approx(0.045 + 1.1 * (0.15 - 0.045))


def test_npv_without_data_or_price_is_insufficient(fake_provider):
    """Acceptance: NPV needs either price history or a supplied current price."""
    orch = _orchestrator([fake_provider("live", fail=True)])
    with pytest.raises(InsufficientDataError):
        asyncio.run(orch.calculate_npv("ETH", investment=1_000.0, horizon_years=3))


def test_npv_rejects_bad_arguments(fake_provider):
    """Acceptance: a zero-year horizon is the caller's error."""
    orch = _orchestrator([fake_provider("live", fail=True)])
    with pytest.raises(ValueError):
        asyncio.run(orch.calculate_npv("ETH", investment=1_000.0, horizon_years=0))


def test_analyze_risk_records_trace():
    """Acceptance: the risk analysis decision is recorded on the trace."""
    orch = _orchestrator([])
    trace = AnalysisTrace("risk", "PORTFOLIO")
    analysis = orch.analyze_risk([Holding(symbol="BTC", amount=1, price=20_000.0)], trace=trace)
    assert analysis.current_btc_allocation_pct == 100.0
    assert trace.decisions("risk")[0]["risk_level"] == analysis.risk_level
