"""
Read-only API for dashboards and the CLI: cached quotes, quota usage, provider health.

Callers should use this instead of opening the SQLite file directly.
"""

from __future__ import annotations

import contextlib
import json
import sqlite3
import time
from typing import Dict, Iterable, Iterator, Optional

import pandas as pd

from .cache import CACHE_NAMESPACE
from .config import busy_timeout_ms
from .db.migrations import run_migrations
from .providers.base import CredentialUsage, ProviderHealth, Quote
from .providers.credentials import QUOTA_NAMESPACE

QUOTE_COLUMNS = [
    "symbol",
    "asset_class",
    "price",
    "change_absolute",
    "change_percent",
    "volume_24h",
    "as_of_utc",
    "source",
    "freshness",
]


@contextlib.contextmanager
def _with_conn(db_path: str) -> Iterator[sqlite3.Connection]:
    """Context manager for read-only DB access: migrations applied and safe pragmas set."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms())};")
        run_migrations(conn)
        yield conn
    finally:
        conn.close()


def _namespace_frame(con: sqlite3.Connection, namespace: str) -> pd.DataFrame:
    rows = pd.read_sql_query(
        "SELECT key, value_json FROM kv_store WHERE namespace = ? ORDER BY key",
        con,
        params=(namespace,),
    )
    if rows.empty:
        return pd.DataFrame(columns=["key"])
    values = pd.json_normalize(rows["value_json"].map(json.loads).tolist())
    return pd.concat([rows[["key"]], values], axis=1)


def load_cached_quotes(db_path: str, now: Optional[float] = None) -> pd.DataFrame:
    """Persisted last-known-good quotes with their age in seconds."""
    with _with_conn(db_path) as con:
        df = _namespace_frame(con, CACHE_NAMESPACE)
    if df.empty:
        return pd.DataFrame(columns=["asset_class", "symbol", "price", "source", "asOf", "age_s"])
    parts = df["key"].str.split(":", n=1, expand=True)
    df.insert(0, "asset_class", parts[0])
    df.insert(1, "symbol", parts[1])
    now = time.time() if now is None else now
    df["age_s"] = (now - df["insertedAt"].astype(float)).clip(lower=0.0)
    return df.drop(columns=["key"]).sort_values(["asset_class", "symbol"]).reset_index(drop=True)


def load_quota_usage(db_path: str) -> pd.DataFrame:
    """Persisted per-credential counters (provider, credential_id, usedToday, resetAt, rejected)."""
    with _with_conn(db_path) as con:
        df = _namespace_frame(con, QUOTA_NAMESPACE)
    if df.empty:
        return pd.DataFrame(columns=["provider", "credential_id", "usedToday", "resetAt", "rejected"])
    parts = df["key"].str.split(":", n=1, expand=True)
    df.insert(0, "provider", parts[0])
    df.insert(1, "credential_id", parts[1])
    return df.drop(columns=["key"])


def load_provider_health(db_path: str) -> pd.DataFrame:
    """Last persisted circuit breaker snapshot per provider."""
    with _with_conn(db_path) as con:
        return pd.read_sql_query(
            """SELECT provider_name, state, consecutive_failures, opened_at,
                      next_probe_at, cooldown_s, last_error, updated_at
               FROM provider_health
               ORDER BY provider_name""",
            con,
        )


def quotes_frame(quotes: Iterable[Quote]) -> pd.DataFrame:
    """In-memory quotes as a table (one row per quote)."""
    rows = [
        {
            "symbol": q.symbol,
            "asset_class": q.asset_class.value,
            "price": q.price,
            "change_absolute": q.change_absolute,
            "change_percent": q.change_percent,
            "volume_24h": q.volume_24h,
            "as_of_utc": q.as_of_utc,
            "source": q.source,
            "freshness": q.freshness.value,
        }
        for q in quotes
    ]
    return pd.DataFrame(rows, columns=QUOTE_COLUMNS)


def health_frame(health: Dict[str, ProviderHealth]) -> pd.DataFrame:
    rows = [
        {
            "provider": h.provider_name,
            "state": h.state.value,
            "failures": h.consecutive_failures,
            "cooldown_s": h.cooldown_s,
            "next_probe_at": h.next_probe_at,
            "last_error": h.last_error,
        }
        for h in health.values()
    ]
    return pd.DataFrame(
        rows, columns=["provider", "state", "failures", "cooldown_s", "next_probe_at", "last_error"]
    )


def usage_frame(usage: Dict[str, Iterable[CredentialUsage]]) -> pd.DataFrame:
    rows = [
        {
            "provider": u.provider,
            "credential_id": u.credential_id,
            "used_today": u.used_today,
            "daily_quota": u.daily_quota,
            "remaining": u.remaining,
            "reset_at": u.reset_at,
        }
        for items in usage.values()
        for u in items
    ]
    return pd.DataFrame(
        rows, columns=["provider", "credential_id", "used_today", "daily_quota", "remaining", "reset_at"]
    )
