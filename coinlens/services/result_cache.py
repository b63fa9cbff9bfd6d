"""
TTL result cache with per-key single-flight.

Interface (ResultCache):
    get(key)                              -> cached value or None
    await compute_if_absent(key, compute) -> cached value, or the result of one shared compute()
    invalidate(key=None, prefix=None)     -> number of entries removed (both None clears everything)

Single-flight:
  - concurrent callers for the same key await one shared in-flight task
  - a cancelled caller only stops waiting; the shared task is cancelled once
    every waiter has been cancelled
  - failures propagate to every waiter and are never cached

Backends:
  InMemoryResultCache   process-local dict, for single-instance deployments
  DatabaseResultCache   result_cache table (JSON payload) shared by every process

Keys: "{metric}:{asset}:{benchmark}:{as_of}"
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Protocol

from pydantic import BaseModel
from sqlalchemy.orm import Session

from coinlens.repositories import cache_repo
from coinlens.services.types import BetaResult, CAGRResult, NPVResult, RiskAnalysis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS: int = 21600

_MODELS: dict[str, type[BaseModel]] = {
    m.__name__: m for m in (BetaResult, CAGRResult, NPVResult, RiskAnalysis)
}


def cache_key(metric: str, asset: str, benchmark: str | None, as_of: date | str) -> str:
    as_of_str = as_of.isoformat() if isinstance(as_of, date) else str(as_of)
    return f"{metric}:{asset.upper()}:{(benchmark or '-').upper()}:{as_of_str}"


class ResultCache(Protocol):
    def get(self, key: str) -> Any | None:
        ...

    async def compute_if_absent(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        ...

    def invalidate(self, key: str | None = None, prefix: str | None = None) -> int:
        ...

    def is_in_flight(self, key: str) -> bool:
        ...


@dataclass
class _InFlight:
    task: asyncio.Task
    waiters: int = 0


class _SingleFlightCache:
    """Shared single-flight machinery. Subclasses provide _load/_store/invalidate."""

    # Backends doing blocking I/O run _load and _store on a worker thread
    blocking_io: bool = False

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._inflight: dict[str, _InFlight] = {}

    def _load(self, key: str) -> Any | None:
        raise NotImplementedError

    def _store(self, key: str, value: Any, ttl_seconds: float) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Any | None:
        return self._load(key)

    async def compute_if_absent(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        cached = await self._off_loop(self._load, key)
        if cached is not None:
            logger.debug("[Cache] hit %s", key)
            return cached

        flight = self._inflight.get(key)
        if flight is None:
            ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
            flight = _InFlight(task=asyncio.ensure_future(self._run(key, compute, ttl)))
            self._inflight[key] = flight
            logger.debug("[Cache] miss %s, computing", key)
        else:
            logger.debug("[Cache] joining in-flight computation for %s", key)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.info("[Cache] every waiter for %s cancelled, cancelling computation", key)
                flight.task.cancel()

    async def _run(self, key: str, compute: Callable[[], Awaitable[Any]], ttl: float) -> Any:
        try:
            value = await compute()
            if value is not None:
                await self._off_loop(self._store, key, value, ttl)
            return value
        finally:
            if key in self._inflight and self._inflight[key].task is asyncio.current_task():
                del self._inflight[key]

    async def _off_loop(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self.blocking_io:
            return await asyncio.to_thread(fn, *args)
        return fn(*args)

    def is_in_flight(self, key: str) -> bool:
        return key in self._inflight

    def in_flight(self) -> int:
        return len(self._inflight)


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------

class InMemoryResultCache(_SingleFlightCache):
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def _load(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def _store(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, value)

    def invalidate(self, key: str | None = None, prefix: str | None = None) -> int:
        if key is not None:
            return 1 if self._entries.pop(key, None) is not None else 0
        if prefix is not None:
            doomed = [k for k in self._entries if k.startswith(prefix)]
        else:
            doomed = list(self._entries)
        for k in doomed:
            del self._entries[k]
        logger.info("[Cache] invalidated %d entries", len(doomed))
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Externalized backend
# ---------------------------------------------------------------------------

def encode_result(value: BaseModel) -> str:
    return json.dumps({"model": type(value).__name__, "data": value.model_dump(mode="json")})


def decode_result(payload: str) -> BaseModel:
    raw = json.loads(payload)
    model = _MODELS[raw["model"]]
    return model.model_validate(raw["data"])


class DatabaseResultCache(_SingleFlightCache):
    blocking_io = True

    def __init__(self, session_factory: Callable[[], Session] | None = None, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        super().__init__(ttl_seconds)
        if session_factory is None:
            from coinlens.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def _load(self, key: str) -> Any | None:
        db = self.session_factory()
        try:
            payload = cache_repo.get_payload(db, key)
        finally:
            db.close()
        if payload is None:
            return None
        try:
            return decode_result(payload)
        except (KeyError, ValueError) as exc:
            logger.warning("[Cache] dropping undecodable entry %s: %s", key, exc)
            self.invalidate(key=key)
            return None

    def _store(self, key: str, value: Any, ttl_seconds: float) -> None:
        if not isinstance(value, BaseModel) or type(value).__name__ not in _MODELS:
            raise TypeError(f"DatabaseResultCache can only store result models, got {type(value).__name__}")
        db = self.session_factory()
        try:
            cache_repo.put_payload(db, key, encode_result(value), ttl_seconds)
        finally:
            db.close()

    def invalidate(self, key: str | None = None, prefix: str | None = None) -> int:
        db = self.session_factory()
        try:
            return cache_repo.delete_entries(db, key=key, prefix=prefix)
        finally:
            db.close()

    def purge_expired(self) -> int:
        db = self.session_factory()
        try:
            removed = cache_repo.purge_expired(db)
        finally:
            db.close()
        logger.info("[Cache] purged %d expired entries", removed)
        return removed
