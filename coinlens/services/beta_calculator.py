"""
CAPM beta from daily log returns.

Benchmark selection:
  BTC            -> SP500 (FRED)
  any other coin -> BTC (Glassnode)

Adaptive window (volatility_30d = sample stdev of the last 30 asset returns, n-1):
  volatility_30d > 2.0    -> ExtremeVolatilityError (garbage data, not just a wild asset)
  volatility_30d > 0.05   -> 90 days
  volatility_30d < 0.015  -> 360 days
  otherwise               -> 180 days   (exactly 0.05 lands here)
  clamped to the number of return observations

Beta over the window:
  cov = sum(devA * devB) / (n-1)
  var = sum(devB^2) / (n-1)         var < 1e-6 -> ZeroVarianceError
  beta_unadjusted = cov / var

Liquidity (median of positive asset volumes over the last 30 aligned days):
  < 1e7 -> x1.2     > 1e9 -> x0.9     else x1.0
  beta = clip(beta_unadjusted * factor, -3, 5)
"""

from __future__ import annotations

import logging
import math
import statistics
from typing import Sequence

from coinlens.config import EngineConfig
from coinlens.errors import ExtremeVolatilityError, InsufficientDataError, ZeroVarianceError
from coinlens.services import confidence_calculator, sector_estimates
from coinlens.services.series_alignment import calculate_log_returns
from coinlens.services.types import AlignedObservation, BetaResult, ReturnObservation

logger = logging.getLogger(__name__)

METHODOLOGY = "Log returns, sample covariance (n-1)"

VOLATILITY_LOOKBACK: int = 30
VOLUME_LOOKBACK: int = 30
EXTREME_VOLATILITY: float = 2.0
MIN_VARIANCE: float = 1e-6
LIQUIDITY_WARNING_VOLUME: float = 1e6
VOLUME_COMPLETENESS_WARNING: float = 0.8

WINDOW_HIGH_VOL: int = 90
WINDOW_MID_VOL: int = 180
WINDOW_LOW_VOL: int = 360

BETA_MIN: float = -3.0
BETA_MAX: float = 5.0


def determine_benchmark(asset: str) -> tuple[str, str]:
    """Returns (benchmark symbol, benchmark provider)."""
    if asset.upper() == "BTC":
        return "SP500", "FRED"
    return "BTC", "Glassnode"


# ---------------------------------------------------------------------------
# Window selection
# ---------------------------------------------------------------------------

def volatility_30d(returns: Sequence[ReturnObservation]) -> float:
    recent = [r.asset_return for r in returns[-VOLATILITY_LOOKBACK:]]
    if len(recent) < 2:
        raise InsufficientDataError(
            f"need at least 2 returns for volatility, got {len(recent)}", available=len(recent), required=2,
        )
    return statistics.stdev(recent)


def window_for_volatility(vol: float, high: float = 0.05, low: float = 0.015) -> int:
    if vol > EXTREME_VOLATILITY:
        raise ExtremeVolatilityError(vol)
    if vol > high:
        return WINDOW_HIGH_VOL
    if vol < low:
        return WINDOW_LOW_VOL
    return WINDOW_MID_VOL


def select_adaptive_window(
    returns: Sequence[ReturnObservation],
    high: float = 0.05,
    low: float = 0.015,
) -> tuple[int, float]:
    """Returns (window_days clamped to len(returns), volatility_30d)."""
    vol = volatility_30d(returns)
    window = window_for_volatility(vol, high, low)
    return min(window, len(returns)), vol


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def sample_covariance_and_variance(returns: Sequence[ReturnObservation]) -> tuple[float, float]:
    n = len(returns)
    if n < 2:
        raise InsufficientDataError(f"need at least 2 returns for covariance, got {n}", available=n, required=2)
    mean_a = math.fsum(r.asset_return for r in returns) / n
    mean_b = math.fsum(r.benchmark_return for r in returns) / n
    cov = math.fsum((r.asset_return - mean_a) * (r.benchmark_return - mean_b) for r in returns) / (n - 1)
    var = math.fsum((r.benchmark_return - mean_b) ** 2 for r in returns) / (n - 1)
    return cov, var


def median_positive_volume(observations: Sequence[AlignedObservation], lookback: int = VOLUME_LOOKBACK) -> float:
    volumes = [o.asset_volume for o in observations[-lookback:] if o.asset_volume > 0]
    return statistics.median(volumes) if volumes else 0.0


def liquidity_factor(median_volume: float, low: float = 1e7, high: float = 1e9) -> float:
    if median_volume < low:
        return 1.2
    if median_volume > high:
        return 0.9
    return 1.0


def clip_beta(beta: float) -> float:
    return max(BETA_MIN, min(BETA_MAX, beta))


# ---------------------------------------------------------------------------
# Beta engine
# ---------------------------------------------------------------------------

def calculate_beta(
    asset: str,
    benchmark: str,
    observations: Sequence[AlignedObservation],
    benchmark_source: str,
    data_source: str,
    config: EngineConfig | None = None,
    warnings: Sequence[str] = (),
) -> BetaResult:
    """
    Measured beta over the adaptive window.

    Raises InsufficientDataError, ExtremeVolatilityError or ZeroVarianceError;
    the caller turns those into a provisional estimate.
    """
    config = config or EngineConfig()
    returns = calculate_log_returns(observations)
    if len(returns) < 2:
        raise InsufficientDataError(
            f"{asset}: {len(returns)} return observations", available=len(returns), required=2,
        )

    window, vol = select_adaptive_window(returns, config.volatility_high, config.volatility_low)
    windowed = returns[-window:]
    cov, var = sample_covariance_and_variance(windowed)
    if var < MIN_VARIANCE:
        raise ZeroVarianceError(var)

    beta_unadjusted = cov / var
    median_volume = median_positive_volume(observations)
    factor = liquidity_factor(median_volume, config.liquidity_low, config.liquidity_high)
    beta = clip_beta(beta_unadjusted * factor)

    vol_complete = confidence_calculator.volume_completeness(observations, VOLUME_LOOKBACK)
    quality = confidence_calculator.data_quality_score(len(observations), len(returns), vol_complete)
    confidence = confidence_calculator.beta_confidence(len(windowed), var, vol)

    logger.info(
        "[Beta] %s vs %s: beta=%.4f (raw %.4f x %.1f) window=%d vol30d=%.4f confidence=%s",
        asset, benchmark, beta, beta_unadjusted, factor, window, vol, confidence,
    )

    return BetaResult(
        asset=asset.upper(),
        beta=beta,
        beta_unadjusted=beta_unadjusted,
        window_days=window,
        volatility_30d=vol,
        median_daily_volume=median_volume,
        liquidity_adjustment_factor=factor,
        data_points=len(windowed),
        window_start=windowed[0].date,
        window_end=windowed[-1].date,
        benchmark=benchmark.upper(),
        benchmark_source=benchmark_source,
        methodology=METHODOLOGY,
        confidence=confidence,
        data_quality_score=quality,
        provisional=False,
        data_source=data_source,
        liquidity_warning=median_volume < LIQUIDITY_WARNING_VOLUME,
        volume_completeness_warning=vol_complete < VOLUME_COMPLETENESS_WARNING,
        warnings=tuple(warnings),
    )


def provisional_beta(
    asset: str,
    benchmark: str,
    benchmark_source: str,
    estimate: float | None = None,
    warnings: Sequence[str] = (),
) -> BetaResult:
    """Sector-based estimate, tagged provisional with low confidence."""
    beta = sector_estimates.sector_beta(asset) if estimate is None else estimate
    return BetaResult(
        asset=asset.upper(),
        beta=clip_beta(beta),
        beta_unadjusted=beta,
        window_days=0,
        volatility_30d=0.0,
        median_daily_volume=0.0,
        liquidity_adjustment_factor=1.0,
        data_points=0,
        benchmark=benchmark.upper(),
        benchmark_source=benchmark_source,
        methodology=sector_estimates.SYNTHETIC_METHODOLOGY,
        confidence="low",
        data_quality_score=0.0,
        provisional=True,
        data_source=sector_estimates.SYNTHETIC_SOURCE,
        warnings=tuple(warnings),
    )
