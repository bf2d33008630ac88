"""
Schema for the engine's SQLite file.

Every statement is guarded (IF NOT EXISTS, column check before ALTER), so
run_migrations() is called unconditionally on every connection open.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, col_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
    if column not in existing:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
        logger.debug("Schema: added %s.%s", table, column)


def run_migrations(conn: sqlite3.Connection) -> None:
    """Create or extend kv_store and provider_health; no-op when already current."""
    # Namespaced JSON rows: quote_cache ("{assetClass}:{symbol}")
    # and quota ("{provider}:{credentialId}").
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS kv_store (
            namespace TEXT NOT NULL,
            key TEXT NOT NULL,
            value_json TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (namespace, key)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS provider_health (
            provider_name TEXT NOT NULL PRIMARY KEY,
            state TEXT NOT NULL DEFAULT 'CLOSED',
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            opened_at TEXT,
            next_probe_at TEXT,
            updated_at TEXT
        )
        """
    )
    # Columns added after the first schema; older files get them on open.
    _ensure_column(conn, "provider_health", "cooldown_s", "REAL")
    _ensure_column(conn, "provider_health", "last_error", "TEXT")
    conn.commit()
