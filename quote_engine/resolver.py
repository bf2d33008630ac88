"""
Fallback resolver: ordered provider walk for one asset class.

For each symbol:
  1. Normal-window cache hit -> returned as freshness=cached.
  2. Providers in priority order. Each attempt passes the circuit breaker,
     reserves a credential, waits for its rate-limit slot and calls the
     adapter with the remaining deadline. The first valid quote is written
     through to the cache and returned as freshness=fresh.
  3. Every provider skipped or failed (or the deadline ran out) ->
     extended-window cache hit as freshness=stale, else NoDataAvailable.

Prices are never fabricated: with no provider data and no cache entry the
caller gets NoDataAvailable.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from .cache import CacheStore, CacheTier
from .errors import (
    NoDataAvailable,
    ProviderUnavailable,
    QuotaExhausted,
    QuotaRejected,
    UpstreamError,
    UpstreamTimeout,
)
from .providers.base import AssetClass, Freshness, ProviderHealth, Quote, QuoteProvider, cache_key
from .providers.credentials import CredentialRotator
from .providers.rate_limit import RateLimiter
from .providers.resilience import BreakerRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0


class _SlotUnavailable(UpstreamTimeout):
    """No rate-limit slot (or no time) left before the deadline; not the provider's fault."""


class FallbackResolver:
    """
    Resolve quotes for one asset class across an ordered provider list.

    Breakers, rotator, rate limiter and cache are shared with the other
    resolvers of the engine; the resolver only drives them.
    """

    def __init__(
        self,
        asset_class: AssetClass,
        providers: List[QuoteProvider],
        breakers: BreakerRegistry,
        rotator: CredentialRotator,
        rate_limiter: RateLimiter,
        cache: CacheStore,
        timeouts: Optional[Dict[str, float]] = None,
        deadline_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.asset_class = asset_class
        self._providers = list(providers)
        self._breakers = breakers
        self._rotator = rotator
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._timeouts: Dict[str, float] = dict(timeouts or {})
        self._clock = clock
        self._last_errors: Dict[str, str] = {}
        self._errors_lock = threading.Lock()
        if deadline_s is None:
            deadline_s = self._default_deadline()
        self.deadline_s = float(deadline_s)

    def _default_deadline(self) -> float:
        names = [p.provider_name for p in self._providers]
        if not names:
            return DEFAULT_TIMEOUT_S
        max_interval = max(self._rate_limiter.interval_for(n) for n in names)
        max_timeout = max(self._timeout_for(n) for n in names)
        return max_interval + max_timeout

    def _timeout_for(self, name: str) -> float:
        return self._timeouts.get(name, DEFAULT_TIMEOUT_S)

    @property
    def provider_names(self) -> List[str]:
        return [p.provider_name for p in self._providers]

    @property
    def last_errors(self) -> Dict[str, str]:
        """Per-provider skip/failure reasons from the most recent provider walk."""
        with self._errors_lock:
            return dict(self._last_errors)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, symbol: str, deadline: Optional[float] = None) -> Quote:
        """
        Return a quote for `symbol`, raising NoDataAvailable if none exists.

        `deadline` is absolute on the resolver's clock; defaults to now + deadline_s.
        """
        sym = symbol.strip().upper()
        key = cache_key(sym, self.asset_class)
        if deadline is None:
            deadline = self._clock() + self.deadline_s

        hit = self._cache.get(key)
        if hit is not None:
            logger.debug("Cache hit for %s (source=%s)", key, hit.quote.source)
            return hit.quote.with_freshness(Freshness.CACHED)

        reasons: Dict[str, str] = {}
        try:
            for provider in self._providers:
                name = provider.provider_name
                if self._clock() >= deadline:
                    reasons[name] = "deadline expired"
                    continue
                breaker = self._breakers.get(name)
                if not breaker.allow_request():
                    reasons[name] = str(ProviderUnavailable(name, breaker.retry_in()))
                    continue
                try:
                    quote = self._attempt(provider, sym, deadline)
                except (QuotaExhausted, _SlotUnavailable) as exc:
                    breaker.release_probe()
                    reasons[name] = str(exc)
                    logger.debug("Skipping %s for %s: %s", name, key, exc)
                    continue
                except UpstreamError as exc:
                    breaker.record_failure(str(exc))
                    reasons[name] = str(exc)
                    logger.debug("Provider %s failed for %s: %s", name, key, exc)
                    continue
                except Exception as exc:
                    # local fault (quota store, rotator); the breaker counts provider failures only
                    breaker.release_probe()
                    reasons[name] = f"{name}: {type(exc).__name__}: {exc}"
                    logger.exception("Attempt on %s for %s failed locally", name, key)
                    continue

                breaker.record_success()
                try:
                    self._cache.put(key, quote)
                except Exception:
                    logger.exception("Cache write-through failed for %s", key)
                logger.debug("Fresh quote for %s from %s", key, name)
                return quote.with_freshness(Freshness.FRESH)
        finally:
            with self._errors_lock:
                self._last_errors = dict(reasons)

        return self.serve_stale(sym, reasons)

    def serve_stale(self, symbol: str, reasons: Optional[Dict[str, str]] = None) -> Quote:
        """Last resort: extended-window cache entry, else NoDataAvailable."""
        sym = symbol.strip().upper()
        key = cache_key(sym, self.asset_class)
        entry = self._cache.get(key, allow_extended=True)
        if entry is None:
            logger.warning("No data available for %s", key)
            raise NoDataAvailable(sym, self.asset_class.value, reasons)
        if entry.tier == CacheTier.NORMAL:
            return entry.quote.with_freshness(Freshness.CACHED)
        logger.warning(
            "All providers failed for %s; serving stale quote from %s (as of %s)",
            key, entry.quote.source, entry.quote.as_of_utc,
        )
        return entry.quote.with_freshness(Freshness.STALE)

    def _attempt(self, provider: QuoteProvider, symbol: str, deadline: float) -> Quote:
        """
        One provider attempt. Rotates through credentials while the provider
        rejects them for quota; every other outcome ends the attempt.
        """
        name = provider.provider_name
        rejection: Optional[QuotaRejected] = None
        while True:
            try:
                credential = self._rotator.acquire(name)
            except QuotaExhausted:
                if rejection is not None:
                    raise rejection
                raise
            if credential is None and provider.requires_credential:
                raise QuotaExhausted(name)

            try:
                self._rate_limiter.wait(name, deadline=deadline)
            except UpstreamTimeout as exc:
                self._rotator.release(credential, success=False)
                raise _SlotUnavailable(name, str(exc).split(": ", 1)[-1]) from exc

            remaining = deadline - self._clock()
            if remaining <= 0:
                self._rotator.release(credential, success=False)
                raise _SlotUnavailable(name, "deadline expired before call")

            try:
                quote = provider.fetch(
                    symbol, credential, timeout_s=min(self._timeout_for(name), remaining)
                )
            except QuotaRejected as exc:
                if credential is None:
                    raise
                self._rotator.reject(credential, exc.retry_after_s)
                rejection = exc
                continue
            except UpstreamError:
                self._rotator.release(credential, success=False)
                raise
            except Exception as exc:
                self._rotator.release(credential, success=False)
                logger.exception("Unexpected error from provider %s", name)
                raise UpstreamError(name, f"{type(exc).__name__}: {exc}") from exc

            self._rotator.release(credential, success=True)
            return quote

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def is_degraded(self) -> bool:
        """True when every provider is OPEN or out of quota."""
        if not self._providers:
            return True
        for provider in self._providers:
            name = provider.provider_name
            if self._breakers.get(name).is_open:
                continue
            if not self._rotator.has_headroom(name):
                continue
            return False
        return True

    def get_health(self) -> Dict[str, ProviderHealth]:
        return {p.provider_name: self._breakers.get(p.provider_name).health() for p in self._providers}
