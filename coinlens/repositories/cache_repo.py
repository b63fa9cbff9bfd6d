"""
ResultCacheEntry repository.

Key: "{metric}:{asset}:{benchmark}:{as_of}"
Payload: JSON text produced by the result model's model_dump(mode="json").
Expired rows are treated as absent and removed on read.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from coinlens.models import ResultCacheEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_payload(db: Session, key: str, now: datetime | None = None) -> str | None:
    now = now or _utcnow()
    row = db.get(ResultCacheEntry, key)
    if row is None:
        return None
    if row.expires_at <= now:
        db.delete(row)
        db.commit()
        logger.debug("[DB][Cache] expired %s", key)
        return None
    return row.payload


def put_payload(db: Session, key: str, payload: str, ttl_seconds: float, now: datetime | None = None) -> None:
    now = now or _utcnow()
    expires_at = now + timedelta(seconds=ttl_seconds)
    row = db.get(ResultCacheEntry, key)
    if row is None:
        db.add(ResultCacheEntry(key=key, payload=payload, created_at=now, expires_at=expires_at))
    else:
        row.payload = payload
        row.created_at = now
        row.expires_at = expires_at
    db.commit()


def delete_entries(db: Session, key: str | None = None, prefix: str | None = None) -> int:
    """Delete one key, every key starting with prefix, or everything when both are None."""
    stmt = delete(ResultCacheEntry)
    if key is not None:
        stmt = stmt.where(ResultCacheEntry.key == key)
    elif prefix is not None:
        stmt = stmt.where(ResultCacheEntry.key.startswith(prefix, autoescape=True))
    removed = db.execute(stmt).rowcount or 0
    db.commit()
    logger.info("[DB][Cache] removed %d entries", removed)
    return removed


def purge_expired(db: Session, now: datetime | None = None) -> int:
    now = now or _utcnow()
    removed = db.execute(delete(ResultCacheEntry).where(ResultCacheEntry.expires_at <= now)).rowcount or 0
    db.commit()
    return removed
