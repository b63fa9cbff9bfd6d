"""
PriceHistory repository.

Idempotency key: (symbol, date)

Upsert behavior:
  - Batch size: 100 rows per batch
  - Check existing by (symbol, date in batch)
  - Insert new rows, update price/volume/source of existing rows
  - A failed batch is rolled back and counted as skipped; later batches continue
"""

import logging
import uuid
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from coinlens.models import PriceHistory
from coinlens.normalizers.series_normalizer import parse_date
from coinlens.services.types import PricePoint

logger = logging.getLogger(__name__)

BATCH_SIZE: int = 100


def _row_to_dict(row: PriceHistory) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for col in row.__table__.columns:
        val = getattr(row, col.name)
        if isinstance(val, (date, datetime)):
            val = val.isoformat()
        result[col.name] = val
    return result


def upsert_points(
    db: Session,
    symbol: str,
    points: Iterable[PricePoint],
    source: str,
    as_of: date | None = None,
) -> dict[str, int]:
    """
    Upsert PriceHistory rows for one symbol.
    Returns {"inserted": N, "updated": N, "skipped": N}.
    """
    points = list(points)
    if not points:
        return {"inserted": 0, "updated": 0, "skipped": 0}

    symbol = symbol.upper()
    as_of = as_of or date.today()
    batches = [points[i: i + BATCH_SIZE] for i in range(0, len(points), BATCH_SIZE)]
    logger.info("[DB][Prices] %d rows in %d batches for %s", len(points), len(batches), symbol)

    total_inserted = 0
    total_updated = 0
    total_skipped = 0

    for i, batch in enumerate(batches):
        try:
            existing_rows = db.scalars(
                select(PriceHistory).where(
                    and_(
                        PriceHistory.symbol == symbol,
                        PriceHistory.date.in_([p.date for p in batch]),
                    )
                )
            ).all()
            existing_map: dict[date, PriceHistory] = {row.date: row for row in existing_rows}

            for p in batch:
                existing = existing_map.get(p.date)
                if existing is None:
                    db.add(PriceHistory(
                        id=str(uuid.uuid4()),
                        symbol=symbol,
                        date=p.date,
                        price=p.price,
                        volume=p.volume,
                        source=source,
                        as_of_date=as_of,
                    ))
                    total_inserted += 1
                else:
                    existing.price = p.price
                    existing.volume = p.volume
                    existing.source = source
                    existing.as_of_date = as_of
                    total_updated += 1

            db.commit()

        except Exception as exc:
            db.rollback()
            logger.error("[DB][Prices] Batch %d failed: %s", i + 1, exc)
            total_skipped += len(batch)

    logger.info("[DB][Prices] Done: inserted=%d updated=%d skipped=%d",
                total_inserted, total_updated, total_skipped)
    return {"inserted": total_inserted, "updated": total_updated, "skipped": total_skipped}


def get_prices_for_symbol(
    db: Session,
    symbol: str,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    limit: int = 5000,
) -> list[dict[str, Any]]:
    """Fetch PriceHistory rows for a symbol in ascending date order."""
    q = select(PriceHistory).where(PriceHistory.symbol == symbol.upper())
    if start_date:
        q = q.where(PriceHistory.date >= parse_date(start_date))
    if end_date:
        q = q.where(PriceHistory.date <= parse_date(end_date))
    q = q.order_by(PriceHistory.date.asc()).limit(limit)
    rows = db.scalars(q).all()
    return [_row_to_dict(r) for r in rows]
