"""
Series alignment and log returns.

Alignment (asset calendar drives the join):
  - every asset date is matched with the benchmark price of the same date
  - if the benchmark has no value that day, the last known benchmark price is
    carried forward for at most MAX_FILL_DAYS calendar days, starting from the
    latest benchmark price before the first asset date when there is one
  - asset dates beyond the fill tolerance are dropped; each run of more than
    MAX_FILL_DAYS consecutive missing benchmark days is reported as a
    DataGapError warning (never raised)
  - output sorted ascending; fewer than 2 aligned points -> empty
  - freshness: last aligned date more than MAX_STALENESS_DAYS before as_of
    adds a warning

Returns:
  asset_return     = ln(P_t / P_{t-1})
  benchmark_return = ln(B_t / B_{t-1})
  pairs with a non-positive price on either side are skipped, not zero-filled
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from coinlens.errors import DataGapError
from coinlens.services.types import AlignedObservation, PricePoint, ReturnObservation

logger = logging.getLogger(__name__)

MAX_FILL_DAYS: int = 2
MAX_STALENESS_DAYS: int = 2


@dataclass(frozen=True)
class AlignmentResult:
    observations: tuple[AlignedObservation, ...]
    gaps: tuple[DataGapError, ...] = ()
    warnings: tuple[str, ...] = field(default=())
    filled_days: int = 0

    def __len__(self) -> int:
        return len(self.observations)


def align_series(
    asset: Sequence[PricePoint],
    benchmark: Sequence[PricePoint],
    as_of: date | None = None,
) -> AlignmentResult:
    bench_by_date = {p.date: p.price for p in benchmark if p.price > 0}
    asset_sorted = sorted((p for p in asset if p.price > 0), key=lambda p: p.date)

    observations: list[AlignedObservation] = []
    gaps: list[DataGapError] = []
    warnings: list[str] = []
    filled = 0

    last_bench_date: date | None = None
    last_bench_price: float | None = None
    if asset_sorted:
        # A benchmark close just before the first asset day can fill its leading days
        earlier = [d for d in bench_by_date if d < asset_sorted[0].date]
        if earlier:
            last_bench_date = max(earlier)
            last_bench_price = bench_by_date[last_bench_date]
    missing_run: list[date] = []

    def close_run() -> None:
        if len(missing_run) > MAX_FILL_DAYS:
            gap = DataGapError(missing_run[0].isoformat(), len(missing_run))
            gaps.append(gap)
            warnings.append(str(gap))
            logger.warning("[Align] %s", gap)
        missing_run.clear()

    for p in asset_sorted:
        bench_price = bench_by_date.get(p.date)
        if bench_price is not None:
            close_run()
            last_bench_date, last_bench_price = p.date, bench_price
            observations.append(AlignedObservation(p.date, p.price, p.volume, bench_price))
            continue

        missing_run.append(p.date)
        if last_bench_date is not None and (p.date - last_bench_date).days <= MAX_FILL_DAYS:
            filled += 1
            observations.append(AlignedObservation(p.date, p.price, p.volume, last_bench_price))
    close_run()

    if len(observations) < 2:
        logger.info("[Align] only %d aligned points, rejecting", len(observations))
        return AlignmentResult(observations=(), gaps=tuple(gaps), warnings=tuple(warnings), filled_days=filled)

    if as_of is not None:
        lag = (as_of - observations[-1].date).days
        if lag > MAX_STALENESS_DAYS:
            msg = f"latest aligned data is {lag} days old (as of {as_of.isoformat()})"
            warnings.append(msg)
            logger.warning("[Align] %s", msg)

    logger.debug("[Align] %d aligned points, %d forward-filled, %d gaps", len(observations), filled, len(gaps))
    return AlignmentResult(
        observations=tuple(observations),
        gaps=tuple(gaps),
        warnings=tuple(warnings),
        filled_days=filled,
    )


def calculate_log_returns(observations: Sequence[AlignedObservation]) -> list[ReturnObservation]:
    returns: list[ReturnObservation] = []
    for prev, cur in zip(observations, observations[1:]):
        if min(prev.asset_price, cur.asset_price, prev.benchmark_price, cur.benchmark_price) <= 0:
            continue
        ra = math.log(cur.asset_price / prev.asset_price)
        rb = math.log(cur.benchmark_price / prev.benchmark_price)
        if not (math.isfinite(ra) and math.isfinite(rb)):
            continue
        returns.append(ReturnObservation(cur.date, ra, rb))
    return returns
