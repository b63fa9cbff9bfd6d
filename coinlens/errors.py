"""
Analytics engine error taxonomy.

Propagation policy:
  - ProviderTimeoutError / InsufficientDataError inside one data tier are
    caught by the DataSourceResolver and trigger fallback to the next tier.
  - ZeroVarianceError / ExtremeVolatilityError abort that one computation;
    the orchestrator answers with a provisional (sector estimate) result.
  - UnconvergedIRRError downgrades confidence; the best-effort IRR is kept.
  - DataGapError is never raised by the aligner, only collected as a warning.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for every error raised by the analytics engine."""


class ConfigError(AnalyticsError):
    pass


class InsufficientDataError(AnalyticsError):
    def __init__(self, message: str, available: int = 0, required: int = 0):
        super().__init__(message)
        self.available = available
        self.required = required


class InvalidPeriodError(AnalyticsError):
    pass


class ZeroVarianceError(AnalyticsError):
    def __init__(self, variance: float):
        super().__init__(f"Benchmark variance too low for reliable calculation: {variance:.3e}")
        self.variance = variance


class ExtremeVolatilityError(AnalyticsError):
    def __init__(self, volatility: float):
        super().__init__(f"Volatility too high for reliable calculation: {volatility:.4f}")
        self.volatility = volatility


class DataGapError(AnalyticsError):
    def __init__(self, start: str, length: int):
        super().__init__(f"{length} consecutive missing benchmark days starting {start}")
        self.start = start
        self.length = length


class ProviderTimeoutError(AnalyticsError):
    def __init__(self, provider: str, symbol: str, reason: str):
        super().__init__(f"[{provider}] {symbol}: {reason}")
        self.provider = provider
        self.symbol = symbol
        self.reason = reason


class UnconvergedIRRError(AnalyticsError):
    def __init__(self, last_estimate: float, iterations: int, reason: str = "max iterations"):
        super().__init__(
            f"IRR did not converge after {iterations} iterations ({reason}); "
            f"last estimate={last_estimate:.6f}"
        )
        self.last_estimate = last_estimate
        self.iterations = iterations
        self.reason = reason
