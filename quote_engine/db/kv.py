"""
Persistent key-value store for engine state that must survive restarts.

The cache store and the quota ledger each own one namespace; neither reads
the other's rows. Values are JSON documents.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple, Union

from .migrations import run_migrations

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]: ...

    def put(self, namespace: str, key: str, value: Dict[str, Any]) -> None: ...

    def delete(self, namespace: str, key: str) -> None: ...

    def items(self, namespace: str) -> Iterator[Tuple[str, Dict[str, Any]]]: ...


class MemoryKeyValueStore:
    """In-process store; state is lost on exit. Used in tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._data.get(namespace, {}).get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, namespace: str, key: str, value: Dict[str, Any]) -> None:
        raw = json.dumps(value, separators=(",", ":"))
        with self._lock:
            self._data.setdefault(namespace, {})[key] = raw

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(key, None)

    def items(self, namespace: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            rows = list(self._data.get(namespace, {}).items())
        for key, raw in rows:
            yield key, json.loads(raw)


class SqliteKeyValueStore:
    """
    SQLite-backed store. One connection shared across threads, serialized by a lock.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        busy_timeout_ms: int = 5000,
    ) -> None:
        path = str(db_path)
        if path != ":memory:":
            path = str(Path(path).resolve())
        self.db_path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock:
            if path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            run_migrations(self._conn)

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.Lock:
        """Serializes every use of `conn`; hold it when sharing the connection."""
        return self._lock

    def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value_json FROM kv_store WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def put(self, namespace: str, key: str, value: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")
        raw = json.dumps(value, separators=(",", ":"))
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv_store (namespace, key, value_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value_json = excluded.value_json,
                    updated_at = excluded.updated_at;
                """,
                (namespace, key, raw, now),
            )
            self._conn.commit()

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM kv_store WHERE namespace = ? AND key = ?", (namespace, key)
            )
            self._conn.commit()

    def items(self, namespace: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key, value_json FROM kv_store WHERE namespace = ? ORDER BY key",
                (namespace,),
            ).fetchall()
        for key, raw in rows:
            try:
                yield key, json.loads(raw)
            except ValueError:
                logger.warning("Skipping corrupt kv row %s/%s", namespace, key)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
