"""
Portfolio BTC allocation and concentration analysis.

Recommended BTC share by total portfolio value:
    <= 20,000    -> 50 %
    <= 100,000   -> 70 %
    >  100,000   -> 85 %

    gap = |current% - recommended%|
    risk_level       gap <= 5: low    gap <= 15: medium    else high
    is_compliant     current% >= recommended%
    rebalance_amount |recommended% * total - current% * total|   (in value terms)
    direction        buy if under-allocated, sell if over, none if equal

Diversification (Herfindahl-Hirschman):
    HHI   = sum(weight_i% ** 2)
    score = max(0, 100 - HHI / 100)        single asset -> 0, 4 equal -> 75

Live prices ({symbol: price}) override a holding's own price when positive.
Empty or zero-value portfolios score 0 with 0 % allocation.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Mapping

from coinlens.services.types import Holding, RebalanceRecommendation, RiskAnalysis, RiskLevel

logger = logging.getLogger(__name__)

BTC_SYMBOL = "BTC"

# (upper bound of total value, recommended BTC %), checked in order
ALLOCATION_TIERS: list[tuple[float, float]] = [
    (20_000.0, 50.0),
    (100_000.0, 70.0),
    (math.inf, 85.0),
]


def recommended_btc_allocation(total_value: float) -> float:
    for upper, pct in ALLOCATION_TIERS:
        if total_value <= upper:
            return pct
    return ALLOCATION_TIERS[-1][1]


def _holding_values(holdings: Iterable[Holding], live_prices: Mapping[str, float] | None) -> list[tuple[str, float]]:
    live = {k.upper(): v for k, v in (live_prices or {}).items()}
    values: list[tuple[str, float]] = []
    for h in holdings:
        symbol = h.symbol.upper()
        price = live.get(symbol)
        if not (isinstance(price, (int, float)) and math.isfinite(price) and price > 0):
            price = h.price
        values.append((symbol, h.amount * price))
    return values


def _risk_level(gap: float) -> RiskLevel:
    if gap <= 5:
        return "low"
    if gap <= 15:
        return "medium"
    return "high"


def diversification_score(values: list[tuple[str, float]]) -> float:
    total = math.fsum(v for _, v in values)
    if not values or total <= 0:
        return 0.0
    hhi = math.fsum(((v / total) * 100) ** 2 for _, v in values)
    return max(0.0, 100.0 - hhi / 100.0)


def analyze_risk(
    holdings: Iterable[Holding],
    live_prices: Mapping[str, float] | None = None,
) -> RiskAnalysis:
    values = _holding_values(holdings, live_prices)
    total_value = math.fsum(v for _, v in values)
    btc_value = math.fsum(v for s, v in values if s == BTC_SYMBOL)

    current_pct = (btc_value / total_value) * 100 if total_value > 0 else 0.0
    recommended_pct = recommended_btc_allocation(total_value)
    gap = abs(current_pct - recommended_pct)

    target_btc_value = recommended_pct / 100 * total_value
    current_btc_value = current_pct / 100 * total_value

    if current_pct < recommended_pct:
        direction = "buy"
    elif current_pct > recommended_pct:
        direction = "sell"
    else:
        direction = "none"

    analysis = RiskAnalysis(
        current_btc_allocation_pct=round(current_pct, 2),
        recommended_btc_allocation_pct=recommended_pct,
        total_value=total_value,
        risk_level=_risk_level(gap),
        is_compliant=current_pct >= recommended_pct,
        rebalance_amount=abs(target_btc_value - current_btc_value),
        rebalance_direction=direction,
        diversification_score=diversification_score(values),
    )
    logger.info(
        "[Risk] total=%.2f btc=%.2f%% target=%.0f%% risk=%s direction=%s",
        total_value, current_pct, recommended_pct, analysis.risk_level, direction,
    )
    return analysis


def get_rebalance_recommendation(analysis: RiskAnalysis) -> RebalanceRecommendation:
    """
    Turn a RiskAnalysis into one action.

    Under-allocation always asks to buy. Over-allocation is compliant and only
    asks to sell once the gap reaches the high risk band.
    """
    current = analysis.current_btc_allocation_pct
    target = analysis.recommended_btc_allocation_pct

    if not analysis.is_compliant:
        return RebalanceRecommendation(
            action="buy_btc",
            amount=analysis.rebalance_amount,
            target_allocation_pct=target,
            reason=f"Increase BTC allocation from {current:.1f}% to {target:g}% to meet risk guidelines.",
        )

    if analysis.rebalance_direction == "sell" and analysis.risk_level == "high":
        return RebalanceRecommendation(
            action="sell_btc",
            amount=analysis.rebalance_amount,
            target_allocation_pct=target,
            reason=f"Reduce BTC allocation from {current:.1f}% to {target:g}% to avoid over-concentration.",
        )

    return RebalanceRecommendation(
        action="none",
        amount=0.0,
        target_allocation_pct=target,
        reason="Portfolio is properly balanced according to risk guidelines.",
    )
