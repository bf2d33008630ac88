"""
Provider architecture for equity and crypto quote retrieval.

Adapters implement the QuoteProvider protocol and are registered per asset
class. Resilience primitives (circuit breakers, rate limiting, credential
rotation, request deduplication) live alongside them and are composed by the
fallback resolver.
"""

from __future__ import annotations

from .base import (
    AssetClass,
    BreakerState,
    Credential,
    CredentialUsage,
    Freshness,
    ProviderHealth,
    Quote,
    QuoteProvider,
)
from .registry import ProviderRegistry
from .resilience import BreakerRegistry, CircuitBreaker

__all__ = [
    "AssetClass",
    "BreakerState",
    "Credential",
    "CredentialUsage",
    "Freshness",
    "ProviderHealth",
    "Quote",
    "QuoteProvider",
    "ProviderRegistry",
    "BreakerRegistry",
    "CircuitBreaker",
]
