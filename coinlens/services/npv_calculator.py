"""
NPV / IRR with a CAPM discount rate.

Projection:
    projected_prices[0] = current_price
    projected_prices[t] = current_price * (1 + cagr) ** t          t = 1..horizon

Cash flows (hold, then sell at the horizon):
    CF_0 = -investment
    CF_t = 0                                                        0 < t < n
    CF_n = investment * projected_prices[n] / current_price         (sale proceeds)
    if 0 < g < r:  CF_n += TV_n = sale_proceeds * (1 + g) / (r - g)
                   terminal_value reports TV_n / (1 + r) ** n

Discount rate:
    market_premium = benchmark_cagr - risk_free_rate
    r = risk_free_rate + beta * market_premium

IRR: Newton-Raphson on NPV(rate), start 0.10, stop when |NPV| < 0.01,
at most 100 iterations, rate clamped to [-0.99, 10] each step. A flat
derivative or exhausted iterations raise UnconvergedIRRError inside
solve_irr; compute_npv keeps the last iterate and marks it unconverged.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

from coinlens.errors import UnconvergedIRRError
from coinlens.services.types import Confidence, NPVResult

logger = logging.getLogger(__name__)

IRR_INITIAL_GUESS: float = 0.10
IRR_TOLERANCE: float = 0.01
IRR_MAX_ITERATIONS: int = 100
IRR_MIN_RATE: float = -0.99
IRR_MAX_RATE: float = 10.0
_FLAT_DERIVATIVE: float = 1e-12


@dataclass(frozen=True)
class IRRSolution:
    rate: float
    iterations: int
    converged: bool


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

def capm_discount_rate(beta: float, benchmark_cagr: float, risk_free_rate: float) -> float:
    return risk_free_rate + beta * (benchmark_cagr - risk_free_rate)


def project_prices(current_price: float, cagr: float, horizon_years: int) -> list[float]:
    return [current_price * (1 + cagr) ** t for t in range(horizon_years + 1)]


def npv_at(rate: float, cash_flows: Sequence[float]) -> float:
    return math.fsum(cf / (1 + rate) ** t for t, cf in enumerate(cash_flows))


def _npv_derivative(rate: float, cash_flows: Sequence[float]) -> float:
    return math.fsum(-t * cf / (1 + rate) ** (t + 1) for t, cf in enumerate(cash_flows))


def _clamp_rate(rate: float) -> float:
    return max(IRR_MIN_RATE, min(IRR_MAX_RATE, rate))


def solve_irr(
    cash_flows: Sequence[float],
    guess: float = IRR_INITIAL_GUESS,
    tolerance: float = IRR_TOLERANCE,
    max_iterations: int = IRR_MAX_ITERATIONS,
) -> IRRSolution:
    """Newton-Raphson root of NPV(rate). Raises UnconvergedIRRError."""
    rate = _clamp_rate(guess)
    for i in range(1, max_iterations + 1):
        value = npv_at(rate, cash_flows)
        if abs(value) < tolerance:
            return IRRSolution(rate=rate, iterations=i, converged=True)
        slope = _npv_derivative(rate, cash_flows)
        if abs(slope) < _FLAT_DERIVATIVE or not math.isfinite(slope):
            raise UnconvergedIRRError(rate, i, reason="flat derivative")
        rate = _clamp_rate(rate - value / slope)

    if abs(npv_at(rate, cash_flows)) < tolerance:
        return IRRSolution(rate=rate, iterations=max_iterations, converged=True)
    raise UnconvergedIRRError(rate, max_iterations)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def compute_npv(
    asset: str,
    current_price: float,
    cagr: float,
    beta: float,
    benchmark_cagr: float,
    investment: float,
    horizon_years: int,
    risk_free_rate: float = 0.045,
    long_term_growth_rate: float | None = None,
    confidence: Confidence = "medium",
    provisional: bool = False,
    data_source: str = "live",
    warnings: Sequence[str] = (),
) -> NPVResult:
    if horizon_years < 1:
        raise ValueError(f"horizon_years must be >= 1, got {horizon_years}")
    if not (math.isfinite(investment) and investment > 0):
        raise ValueError(f"investment must be positive, got {investment}")
    if not (math.isfinite(current_price) and current_price > 0):
        raise ValueError(f"current_price must be positive, got {current_price}")

    notes = list(warnings)
    market_premium = benchmark_cagr - risk_free_rate
    rate = capm_discount_rate(beta, benchmark_cagr, risk_free_rate)
    if rate <= -1:
        notes.append(f"CAPM discount rate {rate:.4f} is below -100%, clamped to {IRR_MIN_RATE}")
        rate = IRR_MIN_RATE

    prices = project_prices(current_price, cagr, horizon_years)
    sale_proceeds = investment * prices[-1] / current_price

    cash_flows = [0.0] * (horizon_years + 1)
    cash_flows[0] = -investment
    cash_flows[-1] = sale_proceeds

    terminal_value: float | None = None
    g = long_term_growth_rate
    if g is not None and 0 < g < rate:
        tv = sale_proceeds * (1 + g) / (rate - g)
        cash_flows[-1] += tv
        terminal_value = tv / (1 + rate) ** horizon_years
    elif g is not None and g > 0:
        notes.append(f"Terminal value skipped: growth {g:.4f} is not below discount rate {rate:.4f}")

    npv = npv_at(rate, cash_flows)

    try:
        solution = solve_irr(cash_flows)
        irr, irr_iterations, irr_converged = solution.rate, solution.iterations, True
    except UnconvergedIRRError as exc:
        logger.warning("[NPV] %s: %s", asset, exc)
        irr, irr_iterations, irr_converged = exc.last_estimate, exc.iterations, False
        confidence = "low"
        notes.append(f"IRR unconverged ({exc.reason}), best estimate reported")

    logger.info(
        "[NPV] %s: npv=%.2f irr=%.4f r=%.4f beta=%.3f horizon=%dy converged=%s",
        asset, npv, irr, rate, beta, horizon_years, irr_converged,
    )

    return NPVResult(
        asset=asset.upper(),
        npv=npv,
        irr=irr,
        irr_converged=irr_converged,
        irr_iterations=irr_iterations,
        discount_rate=rate,
        cash_flows=tuple(cash_flows),
        projected_prices=tuple(prices),
        beta=beta,
        market_premium=market_premium,
        terminal_value=terminal_value,
        horizon_years=horizon_years,
        investment=investment,
        current_price=current_price,
        cagr=cagr,
        benchmark_cagr=benchmark_cagr,
        risk_free_rate=risk_free_rate,
        confidence="low" if provisional else confidence,
        provisional=provisional,
        data_source=data_source,
        warnings=tuple(notes),
    )
