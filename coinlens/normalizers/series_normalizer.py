"""
Provider payload normalizers.

Every external payload is parsed into strict PricePoint records here, at the
boundary, so nothing downstream ever sees NaN, strings or negative prices.

Payload shapes:
  Glassnode  [{"t": <unix seconds>, "v": <number>}, ...]
  FRED       {"observations": [{"date": "YYYY-MM-DD", "value": "<number>|."}, ...]}
  Persisted  [{"date": date|str, "price": float, "volume": float|None}, ...]

Rules:
  - price must be finite and > 0, otherwise the point is dropped
  - volume must be finite and >= 0, otherwise it becomes 0.0
  - duplicate dates keep the last value seen
  - output is sorted ascending by date
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Iterable

from coinlens.services.types import PricePoint

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _num_or_null(v: Any) -> float | None:
    """Return float if v is a valid finite number, else None."""
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def _unix_to_date(ts_seconds: Any) -> date | None:
    ts = _num_or_null(ts_seconds)
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        return None


def parse_date(d: Any) -> date | None:
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    if isinstance(d, str):
        try:
            return date.fromisoformat(d.strip()[:10])
        except ValueError:
            return None
    return None


def _build_points(rows: Iterable[tuple[date | None, Any, Any]], label: str) -> list[PricePoint]:
    by_date: dict[date, PricePoint] = {}
    dropped = 0
    for d, raw_price, raw_volume in rows:
        price = _num_or_null(raw_price)
        if d is None or price is None or price <= 0:
            dropped += 1
            continue
        volume = _num_or_null(raw_volume)
        if volume is None or volume < 0:
            volume = 0.0
        by_date[d] = PricePoint(date=d, price=price, volume=volume)

    if dropped:
        logger.debug("[Normalize][%s] dropped %d malformed points", label, dropped)
    return [by_date[d] for d in sorted(by_date)]


# ---------------------------------------------------------------------------
# Glassnode
# ---------------------------------------------------------------------------

def normalize_glassnode_values(payload: Any) -> dict[date, float]:
    """[{t, v}] -> {date: value}; malformed entries are skipped."""
    if not isinstance(payload, list):
        return {}
    out: dict[date, float] = {}
    for item in payload:
        if not isinstance(item, dict):
            continue
        d = _unix_to_date(item.get("t"))
        v = _num_or_null(item.get("v"))
        if d is not None and v is not None:
            out[d] = v
    return out


def normalize_glassnode_series(
    price_payload: Any,
    volume_payload: Any = None,
) -> list[PricePoint]:
    """Merge Glassnode price and volume payloads into PricePoints by date."""
    prices = normalize_glassnode_values(price_payload)
    volumes = normalize_glassnode_values(volume_payload) if volume_payload is not None else {}
    return _build_points(
        ((d, p, volumes.get(d, 0.0)) for d, p in prices.items()),
        "Glassnode",
    )


# ---------------------------------------------------------------------------
# FRED
# ---------------------------------------------------------------------------

def normalize_fred_observations(payload: Any) -> list[PricePoint]:
    """FRED observations -> PricePoints. FRED uses "." for a missing value."""
    observations = payload.get("observations") if isinstance(payload, dict) else None
    if not isinstance(observations, list):
        return []
    rows = []
    for obs in observations:
        if not isinstance(obs, dict):
            continue
        value = obs.get("value")
        if value in (".", "", None):
            continue
        rows.append((parse_date(obs.get("date")), value, 0.0))
    return _build_points(rows, "FRED")


# ---------------------------------------------------------------------------
# Persisted rows / CSV imports
# ---------------------------------------------------------------------------

def normalize_rows(rows: Iterable[dict[str, Any]]) -> list[PricePoint]:
    return _build_points(
        ((parse_date(r.get("date")), r.get("price"), r.get("volume")) for r in rows),
        "Rows",
    )
