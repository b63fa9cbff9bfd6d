"""
Data source resolution: ordered fallback across data tiers.

Tier order (first sufficient answer wins):
  1. live       MarketDataGateway (Glassnode / FRED)
  2. persisted  PersistedHistoryProvider (price_history table)
  3. synthetic  sector estimates, never fails

A tier is abandoned when any requested symbol comes back as Failure, raises,
or has fewer than `minimum` points (InsufficientDataError within that tier).
Tier-local failures are logged and recorded on the trace, never raised.

Provenance:
  Resolution.reliable is True only for the live tier.
  SyntheticResolution is always provisional with low confidence.

Live successes are written through to the persisted store on a worker thread;
a write failure is logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Protocol, Sequence

from coinlens.errors import InsufficientDataError
from coinlens.services import sector_estimates
from coinlens.services.analysis_trace import AnalysisTrace
from coinlens.services.types import Failure, Series, SeriesResult

logger = logging.getLogger(__name__)

TIER_LIVE = "live"
TIER_PERSISTED = "persisted"
TIER_SYNTHETIC = "synthetic"


class SeriesProvider(Protocol):
    name: str
    tier: str

    async def fetch(self, symbol: str, since: date, until: date) -> SeriesResult:
        ...


class SeriesStore(Protocol):
    def store(self, series: Series) -> dict[str, int]:
        ...


@dataclass(frozen=True)
class Resolution:
    tier: str
    source: str
    series: tuple[Series, ...]
    reliable: bool
    provisional: bool = False

    @property
    def primary(self) -> Series:
        return self.series[0]

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(w for s in self.series for w in s.warnings)


@dataclass(frozen=True)
class SyntheticResolution:
    symbol: str
    beta: float
    cagr: float
    reasons: tuple[str, ...] = ()
    tier: str = TIER_SYNTHETIC
    source: str = sector_estimates.SYNTHETIC_SOURCE
    reliable: bool = False
    provisional: bool = True


ResolutionResult = Resolution | SyntheticResolution


class DataSourceResolver:
    def __init__(
        self,
        tiers: Sequence[SeriesProvider],
        store: SeriesStore | None = None,
        log: logging.Logger | None = None,
    ):
        self.tiers = list(tiers)
        self.store = store
        self.log = log or logger

    async def resolve_series(
        self,
        symbol: str,
        since: date,
        until: date,
        minimum: int,
        trace: AnalysisTrace | None = None,
    ) -> ResolutionResult:
        return await self._resolve((symbol.upper(),), since, until, minimum, trace)

    async def resolve_pair(
        self,
        asset: str,
        benchmark: str,
        since: date,
        until: date,
        minimum: int,
        trace: AnalysisTrace | None = None,
    ) -> ResolutionResult:
        """Resolve asset and benchmark from the same tier, fetched concurrently."""
        return await self._resolve((asset.upper(), benchmark.upper()), since, until, minimum, trace)

    # ------------------------------------------------------------------

    async def _resolve(
        self,
        symbols: tuple[str, ...],
        since: date,
        until: date,
        minimum: int,
        trace: AnalysisTrace | None,
    ) -> ResolutionResult:
        if since >= until:
            raise ValueError(f"since ({since}) must be before until ({until})")

        reasons: list[str] = []
        for provider in self.tiers:
            outcome = await self._attempt(provider, symbols, since, until, minimum)
            if isinstance(outcome, str):
                reasons.append(f"{provider.tier}: {outcome}")
                self.log.warning("[Resolver] %s tier %s failed for %s: %s",
                                 provider.tier, provider.name, "/".join(symbols), outcome)
                if trace is not None:
                    trace.event("resolve", "tier_failed", tier=provider.tier, provider=provider.name, reason=outcome)
                continue

            if provider.tier == TIER_LIVE:
                await self._write_through(outcome)

            counts = {s.symbol: len(s) for s in outcome}
            self.log.info("[Resolver] %s served by %s tier (%s)", "/".join(symbols), provider.tier, counts)
            if trace is not None:
                trace.event("resolve", "tier_selected", tier=provider.tier, provider=provider.name, points=counts)
            return Resolution(
                tier=provider.tier,
                source=outcome[0].source,
                series=outcome,
                reliable=provider.tier == TIER_LIVE,
            )

        asset = symbols[0]
        synthetic = SyntheticResolution(
            symbol=asset,
            beta=sector_estimates.sector_beta(asset),
            cagr=sector_estimates.sector_cagr(asset),
            reasons=tuple(reasons),
        )
        self.log.warning("[Resolver] %s: every data tier failed, using sector estimate", asset)
        if trace is not None:
            trace.event("resolve", "tier_selected", tier=TIER_SYNTHETIC, provider=synthetic.source,
                        beta=synthetic.beta, cagr=synthetic.cagr)
            trace.degrade("resolve", "all data tiers failed")
        return synthetic

    async def _attempt(
        self,
        provider: SeriesProvider,
        symbols: tuple[str, ...],
        since: date,
        until: date,
        minimum: int,
    ) -> tuple[Series, ...] | str:
        """Fetch every symbol from one tier. Returns the series, or a failure reason."""
        results = await asyncio.gather(
            *(provider.fetch(s, since, until) for s in symbols),
            return_exceptions=True,
        )

        collected: list[Series] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result  # cancellation
            if isinstance(result, Exception):
                return f"{symbol}: {type(result).__name__}: {result}"
            if isinstance(result, Failure):
                return f"{symbol}: {result.reason}"
            if len(result) < minimum:
                err = InsufficientDataError(
                    f"{symbol}: {len(result)} points, need {minimum}",
                    available=len(result),
                    required=minimum,
                )
                return str(err)
            collected.append(result)
        return tuple(collected)

    async def _write_through(self, series: tuple[Series, ...]) -> None:
        if self.store is None:
            return
        for s in series:
            try:
                await asyncio.to_thread(self.store.store, s)
            except Exception as exc:
                self.log.warning("[Resolver] write-through of %s failed: %s", s.symbol, exc)
