"""
Engine configuration.

All options can be overridden through COINLENS_* environment variables.
A .env file at the repository root is loaded first (override=False), so
values already exported in the shell win.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from coinlens.errors import ConfigError

logger = logging.getLogger(__name__)

_ENV_PREFIX = "COINLENS_"
_DEFAULT_DB_PATH = Path(__file__).resolve().parent / "coinlens.db"


def load_env_file(path: Path | None = None) -> bool:
    """Load .env into os.environ. Returns True if a file was read."""
    try:
        from dotenv import load_dotenv
    except ImportError:
        return False  # python-dotenv not installed, rely on the shell environment
    env_path = path or Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


@dataclass(frozen=True)
class EngineConfig:
    cache_ttl_seconds: int = 21600
    min_aligned_points: int = 180
    min_cagr_points: int = 2
    risk_free_rate: float = 0.045
    long_term_growth_rate: float = 0.03
    volatility_high: float = 0.05
    volatility_low: float = 0.015
    liquidity_low: float = 1e7
    liquidity_high: float = 1e9
    fetch_timeout_seconds: float = 30.0
    lookback_days: int = 400
    cache_backend: str = "memory"
    database_url: str = f"sqlite:///{_DEFAULT_DB_PATH}"

    def __post_init__(self) -> None:
        if self.cache_backend not in ("memory", "database"):
            raise ConfigError(f"cache_backend must be 'memory' or 'database', got {self.cache_backend!r}")
        if self.volatility_low >= self.volatility_high:
            raise ConfigError("volatility_low must be below volatility_high")
        if self.liquidity_low >= self.liquidity_high:
            raise ConfigError("liquidity_low must be below liquidity_high")
        if self.min_cagr_points < 2:
            raise ConfigError("min_cagr_points must be at least 2")
        if self.cache_ttl_seconds <= 0 or self.fetch_timeout_seconds <= 0:
            raise ConfigError("cache_ttl_seconds and fetch_timeout_seconds must be positive")

    @property
    def volatility_thresholds(self) -> dict[str, float]:
        return {"high": self.volatility_high, "low": self.volatility_low}

    @property
    def liquidity_thresholds(self) -> dict[str, float]:
        return {"low": self.liquidity_low, "high": self.liquidity_high}

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, load_dotenv_file: bool = True) -> "EngineConfig":
        if load_dotenv_file and environ is None:
            load_env_file()
        env = os.environ if environ is None else environ

        overrides: dict[str, Any] = {}
        for f in fields(cls):
            var = _ENV_PREFIX + f.name.upper()
            raw = env.get(var)
            if raw is None or raw.strip() == "":
                continue
            overrides[f.name] = _parse(var, raw.strip(), type(f.default))

        if overrides:
            logger.info("[Config] overrides from environment: %s", sorted(overrides))
        return cls(**overrides)


def _parse(var: str, raw: str, target: type) -> Any:
    try:
        if target is int:
            return int(float(raw))
        if target is float:
            return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{var}={raw!r} is not a valid {target.__name__}") from exc
    return raw
