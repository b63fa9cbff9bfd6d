"""
Load a CSV export of daily prices into the price_history table.

    python -m coinlens.scripts.import_prices prices.csv [--source csv-import] [--database-url URL]

Expected header: symbol,date,price,volume (volume optional). Rows that do not
parse are skipped and counted; the rest are upserted per symbol on
(symbol, date), so re-importing the same file is harmless.
"""

import argparse
import csv
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from coinlens.database import SessionLocal, build_engine, build_session_factory, init_db
from coinlens.normalizers.series_normalizer import normalize_rows
from coinlens.repositories import prices_repo

logger = logging.getLogger(__name__)

NULL_VALUES = {"", "null", "none", "na", "nan", "n/a"}


def parse_numeric(raw: str | None) -> float | None:
    if raw is None:
        return None
    text = raw.strip().replace(",", "")
    if text.lower() in NULL_VALUES:
        return None
    return float(text)


def read_rows(csv_path: Path) -> tuple[dict[str, list[dict[str, Any]]], int]:
    """Group CSV rows by symbol. Returns ({symbol: rows}, skipped_count)."""
    by_symbol: dict[str, list[dict[str, Any]]] = defaultdict(list)
    skipped = 0
    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        for line_no, row in enumerate(reader, start=2):
            try:
                symbol = (row.get("symbol") or "").strip().upper()
                if not symbol:
                    raise ValueError("empty symbol")
                by_symbol[symbol].append({
                    "date": (row.get("date") or "").strip(),
                    "price": parse_numeric(row.get("price")),
                    "volume": parse_numeric(row.get("volume")),
                })
            except ValueError as exc:
                skipped += 1
                logger.warning("%s:%s skipped row: %s", csv_path.name, line_no, exc)
    return by_symbol, skipped


def import_csv(session: Session, csv_path: Path, source: str = "csv-import") -> dict[str, dict[str, int]]:
    by_symbol, skipped = read_rows(csv_path)
    summary: dict[str, dict[str, int]] = {}
    for symbol, rows in sorted(by_symbol.items()):
        points = normalize_rows(rows)
        counts = prices_repo.upsert_points(session, symbol, points, source=source)
        counts["dropped"] = len(rows) - len(points)
        summary[symbol] = counts
        logger.info("%s -> inserted=%d updated=%d dropped=%d",
                    symbol, counts["inserted"], counts["updated"], counts["dropped"])
    if skipped:
        logger.info("%s: %d unparsable rows skipped", csv_path.name, skipped)
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import daily price history CSV into price_history.")
    parser.add_argument("csv_path", type=Path, help="CSV file with symbol,date,price,volume columns")
    parser.add_argument("--source", default="csv-import", help="value stored in price_history.source")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL, defaults to COINLENS_DATABASE_URL")
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    args = build_parser().parse_args(argv)
    if not args.csv_path.exists():
        logger.error("Missing CSV file: %s", args.csv_path)
        return 1

    if args.database_url:
        engine = build_engine(args.database_url)
        init_db(engine)
        session_factory = build_session_factory(engine)
    else:
        init_db()
        session_factory = SessionLocal

    with session_factory() as session:
        summary = import_csv(session, args.csv_path, source=args.source)
    logger.info("Imported %d symbols from %s", len(summary), args.csv_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
