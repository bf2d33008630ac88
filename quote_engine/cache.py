"""
Tiered-TTL cache of the last-known-good quote per (symbol, asset class).

Two age windows apply to every entry:
- normal: short, served while providers are healthy (freshness=cached)
- extended: much longer, served only when every provider failed (freshness=stale)

Entries are written through to a KeyValueStore so that a cold start can serve
stale-but-labelled data immediately. Entries are never deleted on read; an
age-based sweep reclaims those older than their extended window.
"""
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .db.kv import KeyValueStore
from .providers.base import AssetClass, Quote

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "quote_cache"


class CacheTier(enum.Enum):
    NORMAL = "normal"
    EXTENDED = "extended"


@dataclass(frozen=True)
class CacheTTL:
    normal_s: float
    extended_s: float

    def __post_init__(self) -> None:
        if self.normal_s < 0 or self.extended_s < self.normal_s:
            raise ValueError(
                f"TTL windows must satisfy 0 <= normal ({self.normal_s}) <= extended ({self.extended_s})"
            )


@dataclass(frozen=True)
class CacheEntry:
    quote: Quote
    inserted_at: float
    tier: CacheTier = CacheTier.NORMAL

    def age(self, now: float) -> float:
        return max(0.0, now - self.inserted_at)


def _split_key(key: str):
    asset, _, symbol = key.partition(":")
    return AssetClass.parse(asset), symbol


class CacheStore:
    """Last-known-good quotes with normal/extended age windows."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        normal_ttl_s: float = 120.0,
        extended_ttl_s: float = 86_400.0,
        ttl_overrides: Optional[Dict[str, CacheTTL]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._default_ttl = CacheTTL(normal_ttl_s, extended_ttl_s)
        self._ttl_overrides: Dict[str, CacheTTL] = dict(ttl_overrides or {})
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def ttl_for(self, source: str) -> CacheTTL:
        """TTL windows for quotes from a given provider (falls back to cache defaults)."""
        return self._ttl_overrides.get(source, self._default_ttl)

    def load(self) -> int:
        """Warm the in-memory map from the persistent store. Returns entries loaded."""
        if self._store is None:
            return 0
        loaded: Dict[str, CacheEntry] = {}
        for key, record in self._store.items(CACHE_NAMESPACE):
            try:
                asset_class, symbol = _split_key(key)
                quote = Quote.from_record(symbol, asset_class, record)
                loaded[key] = CacheEntry(quote=quote, inserted_at=float(record["insertedAt"]))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable cache entry %s: %s", key, exc)
        with self._lock:
            for key, entry in loaded.items():
                current = self._entries.get(key)
                if current is None or current.inserted_at < entry.inserted_at:
                    self._entries[key] = entry
        logger.info("Loaded %d cached quotes from store", len(loaded))
        return len(loaded)

    def get(self, key: str, allow_extended: bool = False) -> Optional[CacheEntry]:
        """Return the entry if within the normal window (or extended, if allowed)."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        ttl = self.ttl_for(entry.quote.source)
        age = entry.age(self._clock())
        if age <= ttl.normal_s:
            return CacheEntry(entry.quote, entry.inserted_at, CacheTier.NORMAL)
        if allow_extended and age <= ttl.extended_s:
            return CacheEntry(entry.quote, entry.inserted_at, CacheTier.EXTENDED)
        return None

    def put(self, key: str, quote: Quote) -> CacheEntry:
        """Overwrite the entry for key; always written with tier=normal."""
        entry = CacheEntry(quote=quote, inserted_at=self._clock(), tier=CacheTier.NORMAL)
        with self._lock:
            self._entries[key] = entry
            if self._store is not None:
                self._store.put(CACHE_NAMESPACE, key, quote.to_record(entry.inserted_at))
        return entry

    def sweep(self) -> int:
        """Evict entries older than their extended window. Returns count evicted."""
        now = self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items()
                if entry.age(now) > self.ttl_for(entry.quote.source).extended_s
            ]
            for key in expired:
                del self._entries[key]
                if self._store is not None:
                    self._store.delete(CACHE_NAMESPACE, key)
        if expired:
            logger.info("Cache sweep evicted %d entries", len(expired))
        return len(expired)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheSweeper(threading.Thread):
    """Daemon thread running CacheStore.sweep() every `interval_s` seconds."""

    def __init__(self, cache: CacheStore, interval_s: float = 600.0) -> None:
        super().__init__(name="quote-cache-sweeper", daemon=True)
        self._cache = cache
        self._interval_s = interval_s
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self._interval_s):
            try:
                self._cache.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
