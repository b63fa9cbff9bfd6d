"""
Synthetic tier: sector-based estimates used when no data tier can serve.

Values are plausible long-run figures per asset family, never measured
statistics. Everything produced from these tables is tagged provisional
with low confidence.

Stablecoins carry beta 0.0 and CAGR 0.0; an explicit zero is a real
estimate here, not a missing entry.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

SYNTHETIC_SOURCE = "sector-estimate"
SYNTHETIC_METHODOLOGY = "Sector-based estimate"

# ---------------------------------------------------------------------------
# Sector tables
# ---------------------------------------------------------------------------

SECTOR_BETAS: dict[str, float] = {
    "BTC": 0.4,
    "ETH": 1.1,
    "USDT": 0.0,
    "USDC": 0.0,
    "BNB": 1.0,
    "ADA": 1.3,
    "SOL": 1.5,
    "DOT": 1.2,
    "LINK": 1.4,
}
DEFAULT_BETA: float = 1.5

SECTOR_CAGRS: dict[str, float] = {
    "BTC": 0.25,
    "ETH": 0.22,
    "USDT": 0.0,
    "USDC": 0.0,
    "SP500": 0.10,
}
DEFAULT_CAGR: float = 0.20

# Expected annual market return per benchmark, used in the CAPM premium when
# the benchmark's own history cannot be measured.
EXPECTED_MARKET_RETURNS: dict[str, float] = {
    "SP500": 0.10,
    "BTC": 0.15,
}


def sector_beta(symbol: str) -> float:
    return SECTOR_BETAS.get(symbol.upper(), DEFAULT_BETA)


def sector_cagr(symbol: str) -> float:
    return SECTOR_CAGRS.get(symbol.upper(), DEFAULT_CAGR)


def expected_market_return(benchmark: str) -> float:
    key = benchmark.upper()
    if key not in EXPECTED_MARKET_RETURNS:
        logger.debug("[Sector] no expected return for %s, using BTC's", key)
    return EXPECTED_MARKET_RETURNS.get(key, EXPECTED_MARKET_RETURNS["BTC"])
