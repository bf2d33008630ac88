"""
Database layer: migrations, key-value persistence and provider health.

Cache entries and quota counters go through the KeyValueStore; breaker
snapshots go to the provider_health table.
"""

from __future__ import annotations

from .health import ProviderHealthStore
from .kv import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore
from .migrations import run_migrations

__all__ = [
    "run_migrations",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqliteKeyValueStore",
    "ProviderHealthStore",
]
