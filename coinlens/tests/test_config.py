"""
Acceptance tests: engine configuration

Rules:
  - Defaults match the documented options.
  - COINLENS_* variables override defaults; blanks are ignored.
  - Unparsable or inconsistent values raise ConfigError naming the problem.
"""

import pytest

from coinlens.config import EngineConfig
from coinlens.errors import ConfigError


def test_defaults():
    """Acceptance: defaults match the documented configuration table."""
    cfg = EngineConfig()
    assert cfg.cache_ttl_seconds == 21600
    assert cfg.min_aligned_points == 180
    assert cfg.risk_free_rate == 0.045
    assert cfg.long_term_growth_rate == 0.03
    assert cfg.volatility_thresholds == {"high": 0.05, "low": 0.015}
    assert cfg.liquidity_thresholds == {"low": 1e7, "high": 1e9}
    assert cfg.cache_backend == "memory"


def test_env_overrides():
    """Acceptance: COINLENS_* variables override the defaults."""
    cfg = EngineConfig.from_env({
        "COINLENS_CACHE_TTL_SECONDS": "60",
        "COINLENS_RISK_FREE_RATE": "0.05",
        "COINLENS_CACHE_BACKEND": "database",
        "COINLENS_LOOKBACK_DAYS": "",
    })
    assert cfg.cache_ttl_seconds == 60
    assert cfg.risk_free_rate == 0.05
    assert cfg.cache_backend == "database"
    assert cfg.lookback_days == 400


def test_unparsable_value_names_variable():
    """Acceptance: a bad value raises ConfigError naming the variable."""
    with pytest.raises(ConfigError, match="COINLENS_RISK_FREE_RATE"):
        EngineConfig.from_env({"COINLENS_RISK_FREE_RATE": "four percent"})


def test_unknown_cache_backend_rejected():
    """Acceptance: only memory and database cache backends are accepted."""
    with pytest.raises(ConfigError):
        EngineConfig(cache_backend="redis")


def test_inverted_volatility_thresholds_rejected():
    """Acceptance: the low volatility threshold must sit below the high one."""
    with pytest.raises(ConfigError):
        EngineConfig(volatility_high=0.01, volatility_low=0.02)
