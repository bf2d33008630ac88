"""
Tests for read_api: context manager and loaders against a temporary SQLite DB,
plus the in-memory frame builders used by the CLI.
"""

from __future__ import annotations

import sqlite3

import pandas as pd
import pytest

from quote_engine.cache import CacheStore
from quote_engine.db.health import ProviderHealthStore
from quote_engine.db.kv import SqliteKeyValueStore
from quote_engine.providers.base import (
    AssetClass,
    BreakerState,
    Credential,
    CredentialUsage,
    Freshness,
    ProviderHealth,
    Quote,
)
from quote_engine.providers.credentials import QuotaLedger
from quote_engine.read_api import (
    QUOTE_COLUMNS,
    _with_conn,
    health_frame,
    load_cached_quotes,
    load_provider_health,
    load_quota_usage,
    quotes_frame,
    usage_frame,
)
from tests.fakes.providers import FAKE_AS_OF, FakeClock

T0 = 1_700_000_000.0


def _quote(symbol: str, asset_class: AssetClass, price: float, source: str) -> Quote:
    return Quote(
        symbol=symbol,
        asset_class=asset_class,
        price=price,
        change_absolute=1.0,
        change_percent=0.5,
        volume_24h=None,
        as_of_utc=FAKE_AS_OF,
        source=source,
    )


@pytest.fixture
def temp_db(tmp_path):
    """Temporary DB seeded through the engine's own stores."""
    db_path = str(tmp_path / "read_api_test.sqlite")
    store = SqliteKeyValueStore(db_path)
    cache = CacheStore(store=store, clock=FakeClock(start=T0))
    cache.put("equity:AAPL", _quote("AAPL", AssetClass.EQUITY, 189.42, "finnhub"))
    cache.put("crypto:BTC", _quote("BTC", AssetClass.CRYPTO, 50000.0, "coingecko"))

    ledger = QuotaLedger(store=store)
    ledger.register(Credential("alphavantage", "key1", "secret", 500))
    ledger.reserve("alphavantage")

    ProviderHealthStore(store.conn, lock=store.lock).save(ProviderHealth(
        provider_name="alphavantage",
        state=BreakerState.OPEN,
        consecutive_failures=5,
        opened_at="2026-03-10T15:30:00+00:00",
        next_probe_at="2026-03-10T15:31:00+00:00",
        cooldown_s=60.0,
        last_error="alphavantage: HTTP 503",
    ))
    store.close()
    return db_path


def test_with_conn_is_context_manager():
    """_with_conn is a real context manager (yields connection, closes on exit)."""
    with _with_conn(":memory:") as conn:
        cur = conn.execute("SELECT 1")
        assert cur.fetchone() == (1,)
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


def test_load_cached_quotes(temp_db):
    df = load_cached_quotes(temp_db, now=T0 + 60)
    assert list(df["symbol"]) == ["BTC", "AAPL"]
    assert list(df["asset_class"]) == ["crypto", "equity"]
    aapl = df[df["symbol"] == "AAPL"].iloc[0]
    assert aapl["price"] == pytest.approx(189.42)
    assert aapl["source"] == "finnhub"
    assert aapl["age_s"] == pytest.approx(60.0)


def test_load_cached_quotes_empty_db(tmp_path):
    df = load_cached_quotes(str(tmp_path / "empty.sqlite"))
    assert df.empty
    assert "age_s" in df.columns


def test_load_quota_usage(temp_db):
    df = load_quota_usage(temp_db)
    assert len(df) == 1
    row = df.iloc[0]
    assert row["provider"] == "alphavantage"
    assert row["credential_id"] == "key1"
    assert row["usedToday"] == 1
    assert not row["rejected"]


def test_load_provider_health(temp_db):
    df = load_provider_health(temp_db)
    assert list(df["provider_name"]) == ["alphavantage"]
    assert df.iloc[0]["state"] == "OPEN"
    assert df.iloc[0]["consecutive_failures"] == 5


def test_quotes_frame_columns():
    q = _quote("ETH", AssetClass.CRYPTO, 3000.0, "kraken").with_freshness(Freshness.STALE)
    df = quotes_frame([q])
    assert list(df.columns) == QUOTE_COLUMNS
    assert df.iloc[0]["freshness"] == "stale"
    assert quotes_frame([]).empty


def test_health_and_usage_frames():
    health = {
        "kraken": ProviderHealth("kraken", BreakerState.HALF_OPEN, 3, None, None, 120.0, "kraken: timeout"),
    }
    hdf = health_frame(health)
    assert hdf.iloc[0]["state"] == "HALF_OPEN"
    assert hdf.iloc[0]["failures"] == 3

    usage = {"finnhub": [CredentialUsage("finnhub", "key1", 40, 100, "2026-03-11T00:00:00+00:00")]}
    udf = usage_frame(usage)
    assert isinstance(udf, pd.DataFrame)
    assert udf.iloc[0]["remaining"] == 60
