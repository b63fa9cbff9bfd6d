"""
Analytics orchestrator: one coordinating task per request.

Data flow:
  cache -> resolver (asset + benchmark concurrently, tier fallback)
        -> align -> log returns -> adaptive window -> beta
        -> CAGR (asset and benchmark)
        -> NPV / IRR from beta + CAGRs
  holdings + live prices -> risk allocation

Failure behavior:
  - tier-local fetch failures are absorbed by the resolver
  - InsufficientDataError / InvalidPeriodError / ZeroVarianceError /
    ExtremeVolatilityError abort that one computation and the caller gets a
    provisional sector estimate instead, exactly as if every data tier failed
  - UnconvergedIRRError is absorbed by the NPV engine (low confidence)
  - argument errors (ValueError) are the caller's and propagate
  - every decision is recorded on the AnalysisTrace passed in (or a fresh one)
  - a request that joins an in-flight computation gets a "joined_in_flight"
    cache event; the resolve/align/beta events stay on the first caller's trace
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Callable, Iterable, Mapping

from coinlens.config import EngineConfig
from coinlens.errors import (
    ExtremeVolatilityError,
    InsufficientDataError,
    InvalidPeriodError,
    ZeroVarianceError,
)
from coinlens.services import beta_calculator, cagr_calculator, npv_calculator, risk_allocation, sector_estimates
from coinlens.services.analysis_trace import AnalysisTrace
from coinlens.services.confidence_calculator import weakest
from coinlens.services.data_source_resolver import DataSourceResolver, SyntheticResolution
from coinlens.services.market_data_gateway import MarketDataGateway
from coinlens.services.persisted_history import PersistedHistoryProvider
from coinlens.services.result_cache import DatabaseResultCache, InMemoryResultCache, ResultCache, cache_key
from coinlens.services.series_alignment import align_series
from coinlens.services.types import BetaResult, CAGRResult, Holding, NPVResult, RiskAnalysis

logger = logging.getLogger(__name__)

_STATISTICAL_ERRORS = (InsufficientDataError, ZeroVarianceError, ExtremeVolatilityError)


def build_resolver(config: EngineConfig, session_factory=None) -> DataSourceResolver:
    persisted = PersistedHistoryProvider(session_factory)
    return DataSourceResolver(
        tiers=[MarketDataGateway(timeout_seconds=config.fetch_timeout_seconds), persisted],
        store=persisted,
    )


def build_cache(config: EngineConfig, session_factory=None) -> ResultCache:
    if config.cache_backend == "database":
        return DatabaseResultCache(session_factory, ttl_seconds=config.cache_ttl_seconds)
    return InMemoryResultCache(ttl_seconds=config.cache_ttl_seconds)


class AnalyticsOrchestrator:
    def __init__(
        self,
        config: EngineConfig | None = None,
        resolver: DataSourceResolver | None = None,
        cache: ResultCache | None = None,
        today: Callable[[], date] = date.today,
        log: logging.Logger | None = None,
    ):
        self.config = config or EngineConfig()
        self.resolver = resolver or build_resolver(self.config)
        self.cache = cache or build_cache(self.config)
        self.today = today
        self.log = log or logger

    async def _cached(self, key: str, trace: AnalysisTrace, compute):
        trace.event("cache", "lookup", key=key)
        if self.cache.is_in_flight(key):
            # Resolve and compute events land on the trace of the request that started it
            trace.event("cache", "joined_in_flight", key=key)
        return await self.cache.compute_if_absent(key, compute)

    # ------------------------------------------------------------------
    # Beta
    # ------------------------------------------------------------------

    async def calculate_beta(
        self,
        asset: str,
        as_of: date | None = None,
        trace: AnalysisTrace | None = None,
    ) -> BetaResult:
        asset = asset.upper()
        as_of = as_of or self.today()
        trace = trace or AnalysisTrace("beta", asset, self.log)
        benchmark, benchmark_source = beta_calculator.determine_benchmark(asset)
        key = cache_key("beta", asset, benchmark, as_of)
        return await self._cached(
            key, trace, lambda: self._compute_beta(asset, benchmark, benchmark_source, as_of, trace),
        )

    async def _compute_beta(
        self,
        asset: str,
        benchmark: str,
        benchmark_source: str,
        as_of: date,
        trace: AnalysisTrace,
    ) -> BetaResult:
        since = as_of - timedelta(days=self.config.lookback_days)
        resolution = await self.resolver.resolve_pair(
            asset, benchmark, since, as_of, self.config.min_aligned_points, trace,
        )
        if isinstance(resolution, SyntheticResolution):
            trace.event("beta", "provisional", beta=resolution.beta)
            return beta_calculator.provisional_beta(
                asset, benchmark, benchmark_source, resolution.beta, warnings=resolution.reasons,
            )

        asset_series, benchmark_series = resolution.series
        aligned = align_series(asset_series.points, benchmark_series.points, as_of)
        warnings = list(resolution.warnings) + list(aligned.warnings)
        trace.event("align", "aligned", points=len(aligned), filled=aligned.filled_days, gaps=len(aligned.gaps))
        for w in aligned.warnings:
            trace.warn("align", w)

        try:
            if len(aligned) < self.config.min_aligned_points:
                raise InsufficientDataError(
                    f"{asset}/{benchmark}: {len(aligned)} aligned points, need {self.config.min_aligned_points}",
                    available=len(aligned),
                    required=self.config.min_aligned_points,
                )
            result = beta_calculator.calculate_beta(
                asset,
                benchmark,
                aligned.observations,
                benchmark_source=benchmark_source,
                data_source=resolution.tier,
                config=self.config,
                warnings=warnings,
            )
        except _STATISTICAL_ERRORS as exc:
            trace.degrade("beta", f"{type(exc).__name__}: {exc}")
            return beta_calculator.provisional_beta(
                asset, benchmark, benchmark_source, warnings=warnings + [str(exc)],
            )

        trace.event(
            "beta", "measured",
            beta=round(result.beta, 6), window=result.window_days,
            confidence=result.confidence, tier=resolution.tier,
        )
        return result

    # ------------------------------------------------------------------
    # CAGR
    # ------------------------------------------------------------------

    async def calculate_cagr(
        self,
        asset: str,
        since: date | None = None,
        until: date | None = None,
        trace: AnalysisTrace | None = None,
    ) -> CAGRResult:
        asset = asset.upper()
        until = until or self.today()
        since = since or until - timedelta(days=self.config.lookback_days)
        if since >= until:
            raise ValueError(f"since ({since}) must be before until ({until})")
        trace = trace or AnalysisTrace("cagr", asset, self.log)
        key = cache_key("cagr", asset, None, f"{since.isoformat()}_{until.isoformat()}")
        return await self._cached(key, trace, lambda: self._compute_cagr(asset, since, until, trace))

    async def _compute_cagr(self, asset: str, since: date, until: date, trace: AnalysisTrace) -> CAGRResult:
        resolution = await self.resolver.resolve_series(asset, since, until, self.config.min_cagr_points, trace)
        if isinstance(resolution, SyntheticResolution):
            trace.event("cagr", "provisional", cagr=resolution.cagr)
            return cagr_calculator.provisional_cagr(asset, resolution.cagr, warnings=resolution.reasons)

        try:
            result = cagr_calculator.calculate_cagr(
                asset,
                resolution.primary.points,
                data_source=resolution.tier,
                tier=resolution.tier,
                min_points=self.config.min_cagr_points,
            )
        except (InsufficientDataError, InvalidPeriodError) as exc:
            trace.degrade("cagr", f"{type(exc).__name__}: {exc}")
            return cagr_calculator.provisional_cagr(asset, warnings=(str(exc),))

        trace.event("cagr", "measured", cagr=round(result.cagr, 6), years=round(result.num_years, 3),
                    confidence=result.confidence, tier=resolution.tier)
        return result

    # ------------------------------------------------------------------
    # NPV / IRR
    # ------------------------------------------------------------------

    async def calculate_npv(
        self,
        asset: str,
        investment: float,
        horizon_years: int,
        as_of: date | None = None,
        current_price: float | None = None,
        long_term_growth_rate: float | None = None,
        risk_free_rate: float | None = None,
        trace: AnalysisTrace | None = None,
    ) -> NPVResult:
        if horizon_years < 1:
            raise ValueError(f"horizon_years must be >= 1, got {horizon_years}")
        if investment <= 0:
            raise ValueError(f"investment must be positive, got {investment}")
        if current_price is not None and current_price <= 0:
            raise ValueError(f"current_price must be positive, got {current_price}")

        asset = asset.upper()
        as_of = as_of or self.today()
        trace = trace or AnalysisTrace("npv", asset, self.log)
        benchmark, _ = beta_calculator.determine_benchmark(asset)

        beta_result, cagr_result, benchmark_cagr_result = await asyncio.gather(
            self.calculate_beta(asset, as_of, trace),
            self.calculate_cagr(asset, until=as_of, trace=trace),
            self.calculate_cagr(benchmark, until=as_of, trace=trace),
        )

        warnings = list(beta_result.warnings) + list(cagr_result.warnings)
        if benchmark_cagr_result.provisional:
            benchmark_cagr = sector_estimates.expected_market_return(benchmark)
            warnings.append(f"Benchmark {benchmark} CAGR unavailable, expected market return {benchmark_cagr:.2%} used")
            trace.event("npv", "benchmark_expected_return", benchmark=benchmark, value=benchmark_cagr)
        else:
            benchmark_cagr = benchmark_cagr_result.cagr

        price = current_price if current_price is not None else cagr_result.ending_price
        if price is None:
            raise InsufficientDataError(f"{asset}: no price history and no current_price supplied", required=1)

        provisional = beta_result.provisional or cagr_result.provisional
        result = npv_calculator.compute_npv(
            asset=asset,
            current_price=price,
            cagr=cagr_result.cagr,
            beta=beta_result.beta,
            benchmark_cagr=benchmark_cagr,
            investment=investment,
            horizon_years=horizon_years,
            risk_free_rate=self.config.risk_free_rate if risk_free_rate is None else risk_free_rate,
            long_term_growth_rate=(
                self.config.long_term_growth_rate if long_term_growth_rate is None else long_term_growth_rate
            ),
            confidence=weakest(beta_result.confidence, cagr_result.confidence),
            provisional=provisional,
            data_source=cagr_result.data_source,
            warnings=warnings,
        )
        trace.event("npv", "computed", npv=round(result.npv, 2), irr=round(result.irr, 6),
                    converged=result.irr_converged, confidence=result.confidence, provisional=provisional)
        return result

    # ------------------------------------------------------------------
    # Risk allocation
    # ------------------------------------------------------------------

    def analyze_risk(
        self,
        holdings: Iterable[Holding],
        live_prices: Mapping[str, float] | None = None,
        trace: AnalysisTrace | None = None,
    ) -> RiskAnalysis:
        holdings = list(holdings)
        trace = trace or AnalysisTrace("risk", "PORTFOLIO", self.log)
        analysis = risk_allocation.analyze_risk(holdings, live_prices)
        trace.event("risk", "analyzed", holdings=len(holdings), risk_level=analysis.risk_level,
                    direction=analysis.rebalance_direction)
        return analysis

    def invalidate(self, prefix: str | None = None) -> int:
        return self.cache.invalidate(prefix=prefix)
