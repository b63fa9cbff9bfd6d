"""
Persisted tier: serves daily history from the price_history table.

Filled by write-through of successful live fetches and by
scripts/import_prices.py. Database errors are reported as Failure like any
other tier-local problem. Session work runs on a worker thread so the event
loop keeps serving the other fetches of a fan-out.
"""

import asyncio
import logging
from datetime import date
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coinlens.normalizers.series_normalizer import normalize_rows
from coinlens.repositories import prices_repo
from coinlens.services.data_source_resolver import TIER_PERSISTED
from coinlens.services.types import Failure, Series, SeriesResult

logger = logging.getLogger(__name__)

PERSISTED_SOURCE = "price_history"


class PersistedHistoryProvider:
    name = "persisted-history"
    tier = TIER_PERSISTED

    def __init__(self, session_factory: Callable[[], Session] | None = None, log: logging.Logger | None = None):
        if session_factory is None:
            from coinlens.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.log = log or logger

    async def fetch(self, symbol: str, since: date, until: date) -> SeriesResult:
        symbol = symbol.upper()
        try:
            rows = await asyncio.to_thread(self._read, symbol, since, until)
        except SQLAlchemyError as exc:
            self.log.warning("[Persisted] %s read failed: %s", symbol, exc)
            return Failure(symbol=symbol, source=PERSISTED_SOURCE, reason=f"database error: {exc}")

        points = normalize_rows(rows)
        if not points:
            return Failure(symbol=symbol, source=PERSISTED_SOURCE, reason="no persisted history")

        self.log.info("[Persisted] %s: %d points (%s .. %s)", symbol, len(points), points[0].date, points[-1].date)
        return Series(symbol=symbol, points=tuple(points), source=PERSISTED_SOURCE)

    def _read(self, symbol: str, since: date, until: date) -> list[dict]:
        db = self.session_factory()
        try:
            return prices_repo.get_prices_for_symbol(db, symbol, start_date=since, end_date=until)
        finally:
            db.close()

    def store(self, series: Series) -> dict[str, int]:
        """Upsert a live series into the table keyed on (symbol, date)."""
        db = self.session_factory()
        try:
            return prices_repo.upsert_points(db, series.symbol, series.points, source=series.source)
        finally:
            db.close()
