"""
Quote engine facade: the only entry point callers need.

    engine = build_engine()
    quote = engine.get_quote("AAPL", "equity")
    quotes, errors = engine.get_quotes(["BTC", "ETH"], "crypto")
    engine.close()

Concurrent get_quote calls for the same symbol share one provider walk
(RequestDeduplicator). Each caller waits at most the resolver deadline; a
caller that gives up falls back to the extended cache window on its own,
without cancelling the shared fetch.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from . import config as config_mod
from .cache import CacheStore, CacheSweeper, CacheTTL
from .db.health import ProviderHealthStore
from .db.kv import KeyValueStore, SqliteKeyValueStore
from .errors import NoDataAvailable, UpstreamTimeout
from .providers.base import AssetClass, CredentialUsage, ProviderHealth, Quote
from .providers.credentials import CredentialRotator, QuotaLedger
from .providers.dedup import RequestDeduplicator
from .providers.defaults import create_default_registry
from .providers.rate_limit import RateLimiter
from .providers.registry import ProviderRegistry
from .providers.resilience import BreakerRegistry, CircuitBreaker
from .resolver import FallbackResolver

logger = logging.getLogger(__name__)

# Extra time a waiter allows beyond the resolver deadline for pool scheduling.
WAITER_GRACE_S = 1.0


class QuoteEngine:
    """Wires resolvers, cache and deduplicator into get_quote/get_quotes."""

    def __init__(
        self,
        resolvers: Dict[AssetClass, FallbackResolver],
        cache: CacheStore,
        breakers: BreakerRegistry,
        rotator: CredentialRotator,
        deduplicator: Optional[RequestDeduplicator] = None,
        health_store: Optional[ProviderHealthStore] = None,
        sweeper: Optional[CacheSweeper] = None,
        store: Optional[KeyValueStore] = None,
        max_workers: int = 8,
    ) -> None:
        self._resolvers = dict(resolvers)
        self._cache = cache
        self._breakers = breakers
        self._rotator = rotator
        self._dedup = deduplicator or RequestDeduplicator(max_workers=max_workers)
        self._health_store = health_store
        self._sweeper = sweeper
        self._store = store
        self._max_workers = max_workers
        self._closed = False

    @property
    def cache(self) -> CacheStore:
        return self._cache

    def resolver(self, asset_class: Union[AssetClass, str]) -> FallbackResolver:
        ac = AssetClass.parse(asset_class)
        resolver = self._resolvers.get(ac)
        if resolver is None:
            raise KeyError(f"No resolver configured for {ac.value}")
        return resolver

    def get_quote(self, symbol: str, asset_class: Union[AssetClass, str] = AssetClass.EQUITY) -> Quote:
        """Best available quote for one symbol. Raises NoDataAvailable."""
        ac = AssetClass.parse(asset_class)
        sym = symbol.strip().upper()
        if not sym:
            raise ValueError("symbol must be non-empty")
        resolver = self._resolvers.get(ac)
        if resolver is None:
            raise NoDataAvailable(sym, ac.value, {"engine": "no providers configured"})
        try:
            return self._dedup.fetch(
                sym, ac, lambda: resolver.resolve(sym), timeout=resolver.deadline_s + WAITER_GRACE_S
            )
        except UpstreamTimeout as exc:
            logger.warning("Gave up waiting for %s:%s: %s", ac.value, sym, exc)
            return resolver.serve_stale(sym, {"engine": str(exc)})

    def get_quotes(
        self,
        symbols: Sequence[str],
        asset_class: Union[AssetClass, str] = AssetClass.EQUITY,
    ) -> Tuple[Dict[str, Quote], List[NoDataAvailable]]:
        """Quotes for many symbols in parallel. Returns (quotes by symbol, errors)."""
        ac = AssetClass.parse(asset_class)
        unique: List[str] = []
        for s in symbols:
            sym = s.strip().upper()
            if sym and sym not in unique:
                unique.append(sym)
        quotes: Dict[str, Quote] = {}
        errors: List[NoDataAvailable] = []
        if not unique:
            return quotes, errors

        def _one(sym: str):
            try:
                return self.get_quote(sym, ac)
            except NoDataAvailable as exc:
                return exc

        workers = max(1, min(self._max_workers, len(unique)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="quote-batch") as pool:
            for sym, result in zip(unique, pool.map(_one, unique)):
                if isinstance(result, NoDataAvailable):
                    errors.append(result)
                else:
                    quotes[sym] = result
        return quotes, errors

    def provider_status(self) -> Dict[str, ProviderHealth]:
        """Breaker snapshot for every configured provider (also persisted, if a DB is attached)."""
        health: Dict[str, ProviderHealth] = {}
        for resolver in self._resolvers.values():
            health.update(resolver.get_health())
        if self._health_store is not None:
            self._health_store.save_snapshot(health.values())
        return health

    def quota_usage(self) -> Dict[str, List[CredentialUsage]]:
        return self._rotator.ledger.snapshot()

    def degraded(self) -> Dict[str, bool]:
        return {ac.value: r.is_degraded() for ac, r in self._resolvers.items()}

    def sweep_cache(self) -> int:
        return self._cache.sweep()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._sweeper is not None:
            self._sweeper.stop(timeout=1.0)
        self._dedup.shutdown(wait=False)
        if self._health_store is not None:
            try:
                self.provider_status()
            except Exception:
                logger.exception("Failed to persist provider health on close")
        if isinstance(self._store, SqliteKeyValueStore):
            self._store.close()

    def __enter__(self) -> "QuoteEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def build_engine(
    cfg: Optional[dict] = None,
    store: Optional[KeyValueStore] = None,
    registry: Optional[ProviderRegistry] = None,
    start_sweeper: bool = False,
    clock: Callable[[], float] = time.monotonic,
) -> QuoteEngine:
    """
    Construct every component from config and inject them into a QuoteEngine.

    `store` defaults to SqliteKeyValueStore at config db.path. Providers that
    require a key but have none configured are left out of their chain.
    """
    cfg = cfg or config_mod.get_config()
    if store is None:
        store = SqliteKeyValueStore(config_mod.db_path(cfg), config_mod.busy_timeout_ms(cfg))
    registry = registry or create_default_registry()

    rate_limiter = RateLimiter(clock=clock)
    ledger = QuotaLedger(store=store)
    rotator = CredentialRotator(ledger)
    breakers = BreakerRegistry()
    ttl_overrides: Dict[str, CacheTTL] = {}
    normal_default = config_mod.normal_ttl_s(cfg)
    extended_default = config_mod.extended_ttl_s(cfg)

    chains: Dict[AssetClass, Tuple[list, Dict[str, float]]] = {}
    for ac in AssetClass:
        chain = []
        timeouts: Dict[str, float] = {}
        for provider in registry.build_chain(ac, config_mod.provider_priority(ac, cfg)):
            name = provider.provider_name
            settings = config_mod.provider_settings(name, cfg)
            credentials = config_mod.load_credentials(settings, provider.requires_credential)
            if provider.requires_credential and not credentials:
                logger.info("Provider %s has no API key configured (%s); skipping", name, settings.keys_env)
                continue
            for credential in credentials:
                ledger.register(credential, reset_hour_utc=settings.reset_hour_utc)
            rate_limiter.configure(name, settings.rate_limit_interval_s)
            breakers.add(CircuitBreaker(
                provider_name=name,
                failure_threshold=settings.failure_threshold,
                cooldown_seconds=settings.cooldown_s,
                max_cooldown_seconds=settings.max_cooldown_s,
                backoff_factor=settings.backoff_factor,
            ))
            if settings.normal_ttl_s is not None or settings.extended_ttl_s is not None:
                normal = settings.normal_ttl_s if settings.normal_ttl_s is not None else normal_default
                extended = settings.extended_ttl_s if settings.extended_ttl_s is not None else extended_default
                ttl_overrides[name] = CacheTTL(normal, max(normal, extended))
            timeouts[name] = settings.timeout_s
            chain.append(provider)
        chains[ac] = (chain, timeouts)

    cache = CacheStore(
        store=store,
        normal_ttl_s=normal_default,
        extended_ttl_s=extended_default,
        ttl_overrides=ttl_overrides,
    )
    cache.load()

    deadline_s = config_mod.resolver_deadline_s(cfg)
    resolvers = {
        ac: FallbackResolver(
            asset_class=ac,
            providers=chain,
            breakers=breakers,
            rotator=rotator,
            rate_limiter=rate_limiter,
            cache=cache,
            timeouts=timeouts,
            deadline_s=deadline_s,
            clock=clock,
        )
        for ac, (chain, timeouts) in chains.items()
    }
    for ac, resolver in resolvers.items():
        logger.info("%s providers: %s (deadline %.1fs)", ac.value, resolver.provider_names, resolver.deadline_s)

    sweeper = None
    if start_sweeper:
        sweeper = CacheSweeper(cache, interval_s=config_mod.sweep_interval_s(cfg))
        sweeper.start()

    health_store = None
    if isinstance(store, SqliteKeyValueStore):
        health_store = ProviderHealthStore(store.conn, lock=store.lock)

    workers = config_mod.max_workers(cfg)
    return QuoteEngine(
        resolvers=resolvers,
        cache=cache,
        breakers=breakers,
        rotator=rotator,
        deduplicator=RequestDeduplicator(max_workers=workers),
        health_store=health_store,
        sweeper=sweeper,
        store=store,
        max_workers=workers,
    )
