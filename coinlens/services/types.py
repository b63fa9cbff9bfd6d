"""
Engine data model.

Internal records (PricePoint, AlignedObservation, ReturnObservation, Series,
Failure) are frozen dataclasses passed between the pure computation steps.

Results handed to collaborators (BetaResult, CAGRResult, NPVResult,
RiskAnalysis) are frozen pydantic models so they serialise to JSON with
model_dump() and re-validate on the way back out of an external cache.
Each carries provenance (data_source / provisional) and confidence so the
dashboard can flag low-trust numbers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from coinlens.errors import ProviderTimeoutError

Confidence = Literal["high", "medium", "low"]
RiskLevel = Literal["low", "medium", "high"]
RebalanceDirection = Literal["buy", "sell", "none"]


# ---------------------------------------------------------------------------
# Time-series records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricePoint:
    date: date
    price: float
    volume: float = 0.0

    def __post_init__(self) -> None:
        if not (isinstance(self.price, (int, float)) and math.isfinite(self.price) and self.price > 0):
            raise ValueError(f"price must be a positive finite number, got {self.price!r}")
        if not (isinstance(self.volume, (int, float)) and math.isfinite(self.volume) and self.volume >= 0):
            raise ValueError(f"volume must be a non-negative finite number, got {self.volume!r}")


@dataclass(frozen=True)
class AlignedObservation:
    date: date
    asset_price: float
    asset_volume: float
    benchmark_price: float

    def __post_init__(self) -> None:
        if not (self.asset_price > 0 and self.benchmark_price > 0):
            raise ValueError("aligned prices must be positive")


@dataclass(frozen=True)
class ReturnObservation:
    date: date
    asset_return: float
    benchmark_return: float


@dataclass(frozen=True)
class Series:
    symbol: str
    points: tuple[PricePoint, ...]
    source: str
    warnings: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class Failure:
    symbol: str
    source: str
    reason: str
    error: ProviderTimeoutError | None = field(default=None, compare=False)


SeriesResult = Union[Series, Failure]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)


class BetaResult(_Result):
    asset: str
    beta: float = Field(ge=-3.0, le=5.0)
    beta_unadjusted: float
    window_days: int = Field(ge=0)
    volatility_30d: float = Field(ge=0.0)
    median_daily_volume: float = Field(ge=0.0)
    liquidity_adjustment_factor: float
    data_points: int = Field(ge=0)
    window_start: date | None = None
    window_end: date | None = None
    benchmark: str
    benchmark_source: str
    methodology: str
    confidence: Confidence
    data_quality_score: float = Field(ge=0.0, le=1.0)
    provisional: bool = False
    data_source: str
    liquidity_warning: bool = False
    volume_completeness_warning: bool = False
    warnings: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _provisional_is_low_confidence(self) -> "BetaResult":
        if self.provisional and self.confidence != "low":
            raise ValueError("provisional beta must carry low confidence")
        return self


class CAGRResult(_Result):
    asset: str
    cagr: float
    beginning_date: date | None = None
    beginning_price: float | None = None
    ending_date: date | None = None
    ending_price: float | None = None
    total_days: int = 0
    num_years: float = 0.0
    growth_ratio: float | None = None
    exponent: float | None = None
    annualized_growth: float | None = None
    data_points: int = 0
    is_valid: bool
    warnings: tuple[str, ...] = ()
    data_source: str
    confidence: Confidence
    provisional: bool = False

    @model_validator(mode="after")
    def _measured_period_is_ordered(self) -> "CAGRResult":
        if self.provisional:
            return self
        if self.beginning_date is None or self.ending_date is None:
            raise ValueError("measured CAGR requires beginning and ending dates")
        if not self.beginning_date < self.ending_date:
            raise ValueError("beginning_date must precede ending_date")
        if not (self.beginning_price and self.beginning_price > 0 and self.ending_price and self.ending_price > 0):
            raise ValueError("beginning and ending prices must be positive")
        return self


class NPVResult(_Result):
    asset: str
    npv: float
    irr: float
    irr_converged: bool
    irr_iterations: int
    discount_rate: float
    cash_flows: tuple[float, ...]
    projected_prices: tuple[float, ...]
    beta: float
    market_premium: float
    terminal_value: float | None = None
    horizon_years: int = Field(ge=1)
    investment: float = Field(gt=0)
    current_price: float = Field(gt=0)
    cagr: float
    benchmark_cagr: float
    risk_free_rate: float
    confidence: Confidence
    provisional: bool = False
    data_source: str
    warnings: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _cash_flow_shape(self) -> "NPVResult":
        if not self.cash_flows or not math.isclose(self.cash_flows[0], -self.investment):
            raise ValueError("cash_flows[0] must equal -investment")
        if len(self.projected_prices) != self.horizon_years + 1:
            raise ValueError("projected_prices must hold horizon_years + 1 entries")
        return self


class Holding(_Result):
    symbol: str = Field(min_length=1)
    amount: float = Field(ge=0)
    price: float = Field(ge=0, description="live or average price")
    category: str | None = None


class RiskAnalysis(_Result):
    current_btc_allocation_pct: float
    recommended_btc_allocation_pct: float
    total_value: float
    risk_level: RiskLevel
    is_compliant: bool
    rebalance_amount: float = Field(ge=0)
    rebalance_direction: RebalanceDirection
    diversification_score: float = Field(ge=0, le=100)


class RebalanceRecommendation(_Result):
    action: Literal["buy_btc", "sell_btc", "none"]
    amount: float
    target_allocation_pct: float
    reason: str
