import math
import os
import random
from datetime import date, timedelta

# Keep test runs off the on-disk database file
os.environ.setdefault("COINLENS_DATABASE_URL", "sqlite://")

import pytest  # noqa: E402

from coinlens.database import build_engine, build_session_factory, init_db  # noqa: E402
from coinlens.services.types import Failure, PricePoint, Series  # noqa: E402


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


def make_pair(
    days: int,
    beta: float = 1.5,
    bench_sigma: float = 0.02,
    noise_sigma: float = 0.0,
    volume: float = 5e8,
    start: date = date(2023, 1, 1),
    seed: int = 7,
) -> tuple[list[PricePoint], list[PricePoint]]:
    """Daily asset/benchmark prices whose log returns obey r_a = beta * r_b + noise."""
    rng = random.Random(seed)
    asset_price, bench_price = 100.0, 1000.0
    asset = [PricePoint(start, asset_price, volume)]
    bench = [PricePoint(start, bench_price, 0.0)]
    for i in range(1, days):
        rb = rng.gauss(0.0, bench_sigma)
        ra = beta * rb + (rng.gauss(0.0, noise_sigma) if noise_sigma else 0.0)
        asset_price *= math.exp(ra)
        bench_price *= math.exp(rb)
        d = start + timedelta(days=i)
        asset.append(PricePoint(d, asset_price, volume))
        bench.append(PricePoint(d, bench_price, 0.0))
    return asset, bench


class FakeProvider:
    """Tier stand-in: serves canned series, or fails every symbol."""

    def __init__(self, tier: str, series: dict[str, list[PricePoint]] | None = None, fail: bool = False,
                 raises: Exception | None = None):
        self.name = f"fake-{tier}"
        self.tier = tier
        self.series = series or {}
        self.fail = fail
        self.raises = raises
        self.calls: list[str] = []

    async def fetch(self, symbol, since, until):
        self.calls.append(symbol)
        if self.raises is not None:
            raise self.raises
        if self.fail or symbol not in self.series:
            return Failure(symbol=symbol, source=self.name, reason="simulated outage")
        points = [p for p in self.series[symbol] if since <= p.date <= until]
        return Series(symbol=symbol, points=tuple(points), source=self.name)


class FakeStore:
    def __init__(self, fail: bool = False):
        self.stored: list[Series] = []
        self.fail = fail

    def store(self, series):
        if self.fail:
            raise RuntimeError("disk full")
        self.stored.append(series)
        return {"inserted": len(series), "updated": 0, "skipped": 0}


@pytest.fixture
def pair_series():
    return make_pair


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def fake_store():
    return FakeStore
