"""
Live market data gateway (the "live" tier of the fallback chain).

Symbol routing:
  SP500         -> FRED series observations (volume is always 0)
  anything else -> Glassnode close price + transfer volume, fetched concurrently

Contract:
  fetch(symbol, since, until) -> Series | Failure
  - since >= until is a caller error and raises ValueError
  - every provider call is bounded by asyncio.wait_for(timeout)
  - provider errors, timeouts and empty payloads come back as Failure, never raised
  - one request per endpoint, no retries inside the tier; fallback belongs to the resolver
  - a volume failure keeps the price series with zero volume and a warning
"""

import asyncio
import logging
from datetime import date

import httpx

from coinlens.api_clients import fred_client, glassnode_client
from coinlens.errors import ProviderTimeoutError
from coinlens.normalizers import series_normalizer
from coinlens.services.data_source_resolver import TIER_LIVE
from coinlens.services.types import Failure, Series, SeriesResult

logger = logging.getLogger(__name__)

FRED_SYMBOLS: frozenset[str] = frozenset({"SP500"})


class MarketDataGateway:
    name = "market-data-gateway"
    tier = TIER_LIVE

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
        log: logging.Logger | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.client = client
        self.log = log or logger

    @staticmethod
    def source_for(symbol: str) -> str:
        return fred_client.PROVIDER if symbol.upper() in FRED_SYMBOLS else glassnode_client.PROVIDER

    async def fetch(self, symbol: str, since: date, until: date) -> SeriesResult:
        if since >= until:
            raise ValueError(f"since ({since}) must be before until ({until})")

        symbol = symbol.upper()
        source = self.source_for(symbol)
        try:
            if source == fred_client.PROVIDER:
                series = await self._fetch_fred(symbol, since, until)
            else:
                series = await self._fetch_glassnode(symbol, since, until)
        except ProviderTimeoutError as exc:
            self.log.warning("[Gateway] %s via %s failed: %s", symbol, source, exc.reason)
            return Failure(symbol=symbol, source=source, reason=exc.reason, error=exc)

        if not series.points:
            self.log.warning("[Gateway] %s via %s returned no usable points", symbol, source)
            return Failure(symbol=symbol, source=source, reason="empty payload after normalization")

        self.log.info("[Gateway] %s via %s: %d points", symbol, source, len(series))
        return series

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def _bounded(self, provider: str, symbol: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(provider, symbol, f"timed out after {self.timeout_seconds:g}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderTimeoutError(provider, symbol, f"transport error: {exc}") from exc

    async def _fetch_fred(self, symbol: str, since: date, until: date) -> Series:
        payload = await self._bounded(
            fred_client.PROVIDER,
            symbol,
            fred_client.fetch_series_observations(
                symbol, since, until, client=self.client, timeout=self.timeout_seconds,
            ),
        )
        points = series_normalizer.normalize_fred_observations(payload)
        return Series(symbol=symbol, points=tuple(points), source=fred_client.PROVIDER)

    async def _fetch_glassnode(self, symbol: str, since: date, until: date) -> Series:
        price_task = self._bounded(
            glassnode_client.PROVIDER,
            symbol,
            glassnode_client.fetch_prices(symbol, since, until, client=self.client, timeout=self.timeout_seconds),
        )
        volume_task = self._bounded(
            glassnode_client.PROVIDER,
            symbol,
            glassnode_client.fetch_volumes(symbol, since, until, client=self.client, timeout=self.timeout_seconds),
        )
        price_payload, volume_payload = await asyncio.gather(price_task, volume_task, return_exceptions=True)
        for outcome in (price_payload, volume_payload):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome  # cancellation

        if isinstance(price_payload, Exception):
            if isinstance(price_payload, ProviderTimeoutError):
                raise price_payload
            raise ProviderTimeoutError(glassnode_client.PROVIDER, symbol, str(price_payload)) from price_payload

        warnings: tuple[str, ...] = ()
        if isinstance(volume_payload, Exception):
            self.log.warning("[Gateway] %s volume unavailable, using zero volume: %s", symbol, volume_payload)
            warnings = (f"volume unavailable: {volume_payload}",)
            volume_payload = None

        points = series_normalizer.normalize_glassnode_series(price_payload, volume_payload)
        return Series(symbol=symbol, points=tuple(points), source=glassnode_client.PROVIDER, warnings=warnings)
