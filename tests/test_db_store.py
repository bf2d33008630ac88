"""Key-value stores, idempotent migrations and provider health persistence."""
from __future__ import annotations

import sqlite3

import pytest

from quote_engine.db.health import ProviderHealthStore
from quote_engine.db.kv import MemoryKeyValueStore, SqliteKeyValueStore
from quote_engine.db.migrations import run_migrations
from quote_engine.providers.base import BreakerState, ProviderHealth


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryKeyValueStore()
        return
    s = SqliteKeyValueStore(tmp_path / "kv.sqlite")
    yield s
    s.close()


def _health(name: str, state: BreakerState = BreakerState.CLOSED, failures: int = 0) -> ProviderHealth:
    return ProviderHealth(
        provider_name=name,
        state=state,
        consecutive_failures=failures,
        opened_at="2026-03-10T15:30:00+00:00" if state == BreakerState.OPEN else None,
        next_probe_at="2026-03-10T15:31:00+00:00" if state == BreakerState.OPEN else None,
        cooldown_s=60.0,
        last_error="finnhub: HTTP 503" if failures else None,
    )


class TestKeyValueStore:
    def test_put_get_overwrite(self, store):
        assert store.get("quote_cache", "equity:AAPL") is None
        store.put("quote_cache", "equity:AAPL", {"price": 189.42})
        store.put("quote_cache", "equity:AAPL", {"price": 190.0})
        assert store.get("quote_cache", "equity:AAPL") == {"price": 190.0}

    def test_namespaces_are_isolated(self, store):
        store.put("quote_cache", "k", {"a": 1})
        store.put("quota", "k", {"b": 2})
        assert store.get("quote_cache", "k") == {"a": 1}
        assert dict(store.items("quota")) == {"k": {"b": 2}}

    def test_delete(self, store):
        store.put("quota", "alphavantage:key1", {"usedToday": 3})
        store.delete("quota", "alphavantage:key1")
        store.delete("quota", "missing")
        assert store.get("quota", "alphavantage:key1") is None
        assert list(store.items("quota")) == []


class TestSqlitePersistence:
    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "kv.sqlite"
        s = SqliteKeyValueStore(path)
        s.put("quota", "finnhub:key1", {"usedToday": 7, "resetAt": "2026-03-11T00:00:00+00:00"})
        s.close()

        reopened = SqliteKeyValueStore(path)
        try:
            assert reopened.get("quota", "finnhub:key1")["usedToday"] == 7
        finally:
            reopened.close()

    def test_corrupt_row_skipped(self, tmp_path):
        s = SqliteKeyValueStore(tmp_path / "kv.sqlite")
        try:
            s.put("quote_cache", "equity:AAPL", {"price": 1.0})
            with s.lock:
                s.conn.execute(
                    "INSERT INTO kv_store (namespace, key, value_json, updated_at) VALUES (?, ?, ?, ?)",
                    ("quote_cache", "equity:BAD", "{not json", "2026-01-01"),
                )
                s.conn.commit()
            assert [k for k, _ in s.items("quote_cache")] == ["equity:AAPL"]
        finally:
            s.close()


class TestMigrations:
    def test_idempotent(self, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "m.sqlite"))
        try:
            run_migrations(conn)
            run_migrations(conn)
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            assert {"kv_store", "provider_health"} <= tables
            cols = {r[1] for r in conn.execute("PRAGMA table_info(provider_health)")}
            assert {"cooldown_s", "last_error"} <= cols
        finally:
            conn.close()


class TestProviderHealthStore:
    def test_snapshot_round_trip_overwrites(self, tmp_path):
        s = SqliteKeyValueStore(tmp_path / "h.sqlite")
        try:
            hs = ProviderHealthStore(s.conn, lock=s.lock)
            hs.save_snapshot([
                _health("alphavantage"),
                _health("finnhub", BreakerState.OPEN, failures=5),
            ])
            hs.save(_health("alphavantage", failures=1))

            saved = hs.load()
            assert sorted(saved) == ["alphavantage", "finnhub"]
            assert saved["alphavantage"].consecutive_failures == 1
            assert saved["finnhub"].state == BreakerState.OPEN
            assert saved["finnhub"].next_probe_at == "2026-03-10T15:31:00+00:00"
            assert saved["finnhub"].last_error == "finnhub: HTTP 503"
        finally:
            s.close()

    def test_missing_table_loads_empty(self):
        conn = sqlite3.connect(":memory:")
        try:
            assert ProviderHealthStore(conn).load() == {}
            assert ProviderHealthStore(conn).get("kraken") is None
        finally:
            conn.close()
