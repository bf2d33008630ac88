"""
Circuit breaker snapshots in SQLite, for the status surface.

Breakers live in memory and always start CLOSED; rows here are what the last
process reported, never state to restore.
"""
from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from ..providers.base import BreakerState, ProviderHealth

logger = logging.getLogger(__name__)

_COLUMNS = (
    "provider_name",
    "state",
    "consecutive_failures",
    "opened_at",
    "next_probe_at",
    "cooldown_s",
    "last_error",
)

_UPSERT_SQL = f"""
    INSERT INTO provider_health ({", ".join(_COLUMNS)}, updated_at)
    VALUES ({", ".join("?" for _ in _COLUMNS)}, ?)
    ON CONFLICT(provider_name) DO UPDATE SET
        {", ".join(f"{c} = excluded.{c}" for c in _COLUMNS[1:])},
        updated_at = excluded.updated_at
"""


def _to_row(health: ProviderHealth, written_at: str) -> tuple:
    return (
        health.provider_name,
        health.state.value,
        health.consecutive_failures,
        health.opened_at,
        health.next_probe_at,
        health.cooldown_s,
        health.last_error,
        written_at,
    )


def _from_row(row: tuple) -> ProviderHealth:
    name, state, failures, opened_at, next_probe_at, cooldown_s, last_error = row
    return ProviderHealth(
        provider_name=name,
        state=BreakerState(state) if state else BreakerState.CLOSED,
        consecutive_failures=int(failures or 0),
        opened_at=opened_at,
        next_probe_at=next_probe_at,
        cooldown_s=float(cooldown_s or 0.0),
        last_error=last_error,
    )


class ProviderHealthStore:
    """
    Writes breaker snapshots to `provider_health`.

    `lock` is the owner's connection lock when the connection is shared
    (see SqliteKeyValueStore.lock); without one, calls are not serialized.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.Lock] = None) -> None:
        self._conn = conn
        self._lock = lock if lock is not None else contextlib.nullcontext()

    def save(self, health: ProviderHealth) -> None:
        self.save_snapshot([health])

    def save_snapshot(self, snapshot: Iterable[ProviderHealth]) -> None:
        """Write several providers in one transaction."""
        written_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        rows = [_to_row(h, written_at) for h in snapshot]
        if not rows:
            return
        with self._lock:
            with self._conn:
                self._conn.executemany(_UPSERT_SQL, rows)
        logger.debug("Saved health for %d providers", len(rows))

    def load(self) -> Dict[str, ProviderHealth]:
        """Last saved snapshot keyed by provider; empty if the table is missing."""
        sql = f"SELECT {', '.join(_COLUMNS)} FROM provider_health ORDER BY provider_name"
        try:
            with self._lock:
                rows = self._conn.execute(sql).fetchall()
        except sqlite3.OperationalError:
            return {}
        return {row[0]: _from_row(row) for row in rows}

    def get(self, provider_name: str) -> Optional[ProviderHealth]:
        return self.load().get(provider_name)
