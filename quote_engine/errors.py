"""
Error taxonomy for quote resolution.

Everything except NoDataAvailable is recovered inside the fallback resolver:
the failure is recorded against the provider's circuit breaker and the next
provider is tried. NoDataAvailable is the only error a caller ever sees.
"""
from __future__ import annotations

from typing import Dict, Optional


class QuoteEngineError(Exception):
    """Base class for all quote engine errors."""


class ProviderUnavailable(QuoteEngineError):
    """Provider's circuit breaker is OPEN (or its HALF_OPEN probe is taken)."""

    def __init__(self, provider: str, retry_in_s: Optional[float] = None) -> None:
        self.provider = provider
        self.retry_in_s = retry_in_s
        msg = f"{provider}: circuit breaker OPEN"
        if retry_in_s is not None:
            msg += f" (retry in {retry_in_s:.1f}s)"
        super().__init__(msg)


class QuotaExhausted(QuoteEngineError):
    """Every credential of a provider is at zero headroom."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: all credentials exhausted")


class UpstreamError(QuoteEngineError):
    """Network or HTTP failure talking to a provider."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class UpstreamMalformed(UpstreamError):
    """Response arrived but lacks required fields (e.g. a numeric price)."""


class UpstreamTimeout(UpstreamError):
    """Adapter call or rate-limit wait exceeded its time budget."""


class QuotaRejected(UpstreamError):
    """
    Provider reported the credential's quota as exceeded.

    `retry_after_s` is set for short-term throttles (HTTP 429, per-minute
    limits): the credential is blocked for that long. None means the daily
    quota is gone and the credential stays exhausted until the next reset.
    """

    def __init__(self, provider: str, message: str, retry_after_s: Optional[float] = None) -> None:
        self.retry_after_s = retry_after_s
        super().__init__(provider, message)

    @property
    def is_throttle(self) -> bool:
        return self.retry_after_s is not None


class NoDataAvailable(QuoteEngineError):
    """No fresh, cached or stale quote could be produced for a symbol."""

    def __init__(
        self,
        symbol: str,
        asset_class: str,
        reasons: Optional[Dict[str, str]] = None,
    ) -> None:
        self.symbol = symbol
        self.asset_class = asset_class
        self.reasons = dict(reasons or {})
        detail = "; ".join(f"{k}: {v}" for k, v in self.reasons.items())
        msg = f"No data available for {asset_class}:{symbol}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
