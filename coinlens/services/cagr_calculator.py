"""
Calendar-exact compound annual growth rate.

    total_days   = (ending_date - beginning_date).days + 1     (both endpoints inclusive)
    num_years    = total_days / 365.25
    growth_ratio = ending_price / beginning_price
    exponent     = 1 / num_years
    cagr         = growth_ratio ** exponent - 1

Rules:
  - malformed / non-positive points are dropped before first/last selection
  - fewer than 2 valid points -> InsufficientDataError
  - ending_date <= beginning_date or num_years <= 0 -> InvalidPeriodError
  - num_years < 1 -> warning (short-period rate), still computed
  - is_valid = no warnings and cagr is finite
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from coinlens.errors import InsufficientDataError, InvalidPeriodError
from coinlens.services import confidence_calculator, sector_estimates
from coinlens.services.types import CAGRResult, PricePoint

logger = logging.getLogger(__name__)

DAYS_PER_YEAR: float = 365.25
SHORT_PERIOD_WARNING = (
    "Period shorter than one year: short-period rate, interpret as short-term growth, not annualized trend"
)


def _valid(p: PricePoint) -> bool:
    return isinstance(p.price, (int, float)) and math.isfinite(p.price) and p.price > 0


def calculate_cagr(
    asset: str,
    points: Sequence[PricePoint],
    data_source: str = "live",
    tier: str = "live",
    min_points: int = 2,
) -> CAGRResult:
    valid = sorted((p for p in points if _valid(p)), key=lambda p: p.date)
    if len(valid) < max(2, min_points):
        raise InsufficientDataError(
            f"{asset}: {len(valid)} valid price points, need {max(2, min_points)}",
            available=len(valid),
            required=max(2, min_points),
        )

    first, last = valid[0], valid[-1]
    if last.date <= first.date:
        raise InvalidPeriodError(f"{asset}: ending date {last.date} does not follow beginning date {first.date}")

    total_days = (last.date - first.date).days + 1
    num_years = total_days / DAYS_PER_YEAR
    if num_years <= 0:
        raise InvalidPeriodError(f"{asset}: non-positive period of {num_years} years")

    growth_ratio = last.price / first.price
    exponent = 1.0 / num_years
    annualized_growth = growth_ratio ** exponent
    cagr = annualized_growth - 1.0

    warnings: list[str] = []
    if num_years < 1:
        warnings.append(SHORT_PERIOD_WARNING)

    is_valid = not warnings and math.isfinite(cagr)
    confidence = confidence_calculator.cagr_confidence(len(valid), num_years, tier)

    logger.info("[CAGR] %s: %.4f over %.2f years (%d points, %s)", asset, cagr, num_years, len(valid), confidence)

    return CAGRResult(
        asset=asset.upper(),
        cagr=cagr,
        beginning_date=first.date,
        beginning_price=first.price,
        ending_date=last.date,
        ending_price=last.price,
        total_days=total_days,
        num_years=num_years,
        growth_ratio=growth_ratio,
        exponent=exponent,
        annualized_growth=annualized_growth,
        data_points=len(valid),
        is_valid=is_valid,
        warnings=tuple(warnings),
        data_source=data_source,
        confidence=confidence,
        provisional=False,
    )


def provisional_cagr(asset: str, estimate: float | None = None, warnings: Sequence[str] = ()) -> CAGRResult:
    cagr = sector_estimates.sector_cagr(asset) if estimate is None else estimate
    return CAGRResult(
        asset=asset.upper(),
        cagr=cagr,
        data_points=0,
        is_valid=False,
        warnings=tuple(warnings) or ("Sector-based estimate, no measured price history",),
        data_source=sector_estimates.SYNTHETIC_SOURCE,
        confidence="low",
        provisional=True,
    )
