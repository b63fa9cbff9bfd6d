"""
Confidence and data-quality scoring.

Beta confidence:
    high    data_points >= 300 and variance > 1e-5 and volatility_30d < 0.1
    medium  data_points >= 180 and variance > 1e-6 and volatility_30d < 0.2
    low     otherwise

Beta data-quality score (each part in [0, 1], averaged, clamped to [0, 1]):
    completeness       = min(1, aligned_points / 365)
    return_yield       = return_points / aligned_points
    volume_completeness = share of the last 30 aligned days with volume > 0

CAGR confidence (points + years + tier, out of 100):
    points  >=1000: 40   >=500: 30   >=100: 20   else 10
    years   >=3: 30      >=2: 20     >=1: 10     else 5
    tier    live: 30     persisted: 20           synthetic: 0
    grade   >=80 high    >=60 medium             else low

Rules:
- Provisional results are always low confidence.
- Confidence never changes a computed value, it only labels it.
"""

from __future__ import annotations

import math
from typing import Any, Sequence

from coinlens.services.types import AlignedObservation, Confidence

VOLUME_WINDOW_DAYS: int = 30
FULL_YEAR_POINTS: int = 365

_TIER_POINTS: dict[str, int] = {
    "live": 30,
    "persisted": 20,
    "synthetic": 0,
}


def _is_num(v: Any) -> bool:
    return isinstance(v, (int, float)) and math.isfinite(v)


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


# ---------------------------------------------------------------------------
# Beta
# ---------------------------------------------------------------------------

def beta_confidence(data_points: int, variance: float, volatility_30d: float) -> Confidence:
    if data_points >= 300 and variance > 1e-5 and volatility_30d < 0.1:
        return "high"
    if data_points >= 180 and variance > 1e-6 and volatility_30d < 0.2:
        return "medium"
    return "low"


def volume_completeness(observations: Sequence[AlignedObservation], window: int = VOLUME_WINDOW_DAYS) -> float:
    recent = list(observations[-window:])
    if not recent:
        return 0.0
    with_volume = sum(1 for o in recent if _is_num(o.asset_volume) and o.asset_volume > 0)
    return with_volume / len(recent)


def data_quality_score(
    aligned_points: int,
    return_points: int,
    volume_complete: float,
) -> float:
    if aligned_points <= 0:
        return 0.0
    completeness = min(1.0, aligned_points / FULL_YEAR_POINTS)
    return_yield = return_points / aligned_points
    score = (completeness + return_yield + _clamp01(volume_complete)) / 3
    return _clamp01(score)


# ---------------------------------------------------------------------------
# CAGR
# ---------------------------------------------------------------------------

def cagr_confidence_score(data_points: int, num_years: float, tier: str) -> int:
    if data_points >= 1000:
        points_score = 40
    elif data_points >= 500:
        points_score = 30
    elif data_points >= 100:
        points_score = 20
    else:
        points_score = 10

    if num_years >= 3:
        years_score = 30
    elif num_years >= 2:
        years_score = 20
    elif num_years >= 1:
        years_score = 10
    else:
        years_score = 5

    return points_score + years_score + _TIER_POINTS.get(tier, 0)


def cagr_confidence(data_points: int, num_years: float, tier: str) -> Confidence:
    score = cagr_confidence_score(data_points, num_years, tier)
    if score >= 80:
        return "high"
    if score >= 60:
        return "medium"
    return "low"


_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2}


def weakest(*levels: Confidence) -> Confidence:
    """Combined confidence of a result built from several inputs."""
    return min(levels, key=lambda c: _RANK[c]) if levels else "low"
