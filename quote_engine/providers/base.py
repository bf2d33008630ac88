"""
Provider interfaces and data contracts.

All quote providers implement the QuoteProvider protocol: a uniform
fetch(symbol) -> Quote regardless of the upstream wire format.

Data is returned via frozen dataclasses for immutability; a Quote is never
mutated after creation, only superseded (see Quote.with_freshness).
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, runtime_checkable


class AssetClass(enum.Enum):
    EQUITY = "equity"
    CRYPTO = "crypto"

    @classmethod
    def parse(cls, value: "AssetClass | str") -> "AssetClass":
        if isinstance(value, AssetClass):
            return value
        return cls(str(value).strip().lower())


class Freshness(enum.Enum):
    """How a returned quote was obtained."""

    FRESH = "fresh"
    CACHED = "cached"
    STALE = "stale"
    SYNTHESIZED = "synthesized"


class BreakerState(enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def epoch_to_iso(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat(timespec="seconds")


def cache_key(symbol: str, asset_class: AssetClass) -> str:
    """Persisted cache key: '{assetClass}:{symbol}'."""
    return f"{asset_class.value}:{symbol.upper()}"


@dataclass(frozen=True)
class Quote:
    """Immutable quote snapshot normalized from any provider."""

    symbol: str
    asset_class: AssetClass
    price: float
    change_absolute: Optional[float]
    change_percent: Optional[float]
    volume_24h: Optional[float]
    # Provider-reported time of the price; None when the provider reports none.
    as_of_utc: Optional[str]
    source: str
    freshness: Freshness = Freshness.FRESH

    def __post_init__(self) -> None:
        if self.price is None or not math.isfinite(self.price) or self.price < 0:
            raise ValueError(f"Invalid price for {self.symbol}: {self.price!r}")

    def with_freshness(self, freshness: Freshness) -> "Quote":
        return replace(self, freshness=freshness)

    def to_record(self, inserted_at: float) -> Dict[str, Any]:
        """Serialize to the persisted cache layout."""
        return {
            "price": self.price,
            "changeAbsolute": self.change_absolute,
            "changePercent": self.change_percent,
            "volume24h": self.volume_24h,
            "asOf": self.as_of_utc,
            "source": self.source,
            "insertedAt": inserted_at,
        }

    @classmethod
    def from_record(
        cls, symbol: str, asset_class: AssetClass, record: Dict[str, Any]
    ) -> "Quote":
        return cls(
            symbol=symbol,
            asset_class=asset_class,
            price=float(record["price"]),
            change_absolute=_opt_float(record.get("changeAbsolute")),
            change_percent=_opt_float(record.get("changePercent")),
            volume_24h=_opt_float(record.get("volume24h")),
            as_of_utc=_opt_str(record.get("asOf")),
            source=str(record["source"]),
            freshness=Freshness.CACHED,
        )


def _opt_float(x: Any) -> Optional[float]:
    if x is None:
        return None
    return float(x)


def _opt_str(x: Any) -> Optional[str]:
    if x is None:
        return None
    return str(x)


@dataclass(frozen=True)
class Credential:
    """An API key (or anonymous free-tier budget) bound to one provider."""

    provider: str
    credential_id: str
    secret: Optional[str]
    daily_quota: int

    @property
    def ledger_key(self) -> str:
        return f"{self.provider}:{self.credential_id}"

    def __repr__(self) -> str:
        # never leak the secret into logs
        return (
            f"Credential(provider={self.provider!r}, credential_id={self.credential_id!r}, "
            f"daily_quota={self.daily_quota})"
        )


@dataclass(frozen=True)
class CredentialUsage:
    """Point-in-time view of a credential's counters (owned by the QuotaLedger)."""

    provider: str
    credential_id: str
    used_today: int
    daily_quota: int
    reset_at: str

    @property
    def remaining(self) -> int:
        return max(0, self.daily_quota - self.used_today)


@dataclass(frozen=True)
class ProviderHealth:
    """Immutable snapshot of a provider's circuit breaker."""

    provider_name: str
    state: BreakerState
    consecutive_failures: int
    opened_at: Optional[str]
    next_probe_at: Optional[str]
    cooldown_s: float
    last_error: Optional[str] = None


@runtime_checkable
class QuoteProvider(Protocol):
    """Protocol for quote adapters."""

    @property
    def provider_name(self) -> str: ...

    @property
    def asset_class(self) -> AssetClass: ...

    @property
    def requires_credential(self) -> bool: ...

    def fetch(
        self,
        symbol: str,
        credential: Optional[Credential] = None,
        timeout_s: float = 15.0,
    ) -> Quote:
        """Fetch a fresh quote for a symbol (e.g. 'AAPL', 'BTC')."""
        ...
