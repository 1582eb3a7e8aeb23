"""
Key-Value Storage Substrate

String keys, JSON-serializable values. Two backends:
- SqliteKeyValueStore: durable, one table, WAL journal
- MemoryKeyValueStore: process-local, for tests and diskless terminals

Every failure is raised as StorageError so callers deal with one type.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from ..common.exceptions import StorageError
from ..common.logging_setup import get_service_logger

logger = get_service_logger("storage.kv")


class KeyValueStore(Protocol):
    """Storage handle injected into the cache store and the outbox"""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Value for {key} is not serializable: {e}", key=key)


def _decode(key: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupt value for {key}: {e}", key=key)


class MemoryKeyValueStore:
    """
    Dict-backed store.

    Values are held in encoded form so a caller mutating what it stored
    or what it read never changes the stored copy.
    """

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return _decode(key, raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = _encode(key, value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqliteKeyValueStore:
    """
    SQLite-backed store.

    Features:
    - One row per key, value stored as JSON text
    - Connection per operation (no shared handle across tasks)
    - WAL journal for fewer disk writes
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)

        # Ensure directory exists
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create {self.db_path.parent}: {e}")

        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema"""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

        logger.info(f"Key-value store initialized: {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Get database connection, translating sqlite failures to StorageError"""
        try:
            # timeout=10.0: fail fast on lock contention instead of blocking forever
            conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open {self.db_path}: {e}")

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise StorageError(str(e))
        finally:
            conn.close()

    def get(self, key: str) -> Any | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM kv_entries WHERE key = ?", (key,)
            ).fetchone()

        if row is None:
            return None
        return _decode(key, row[0])

    def set(self, key: str, value: Any) -> None:
        encoded = _encode(key, value)
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO kv_entries (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, encoded, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
            conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        # substr() instead of LIKE: case-sensitive, no wildcard escaping
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_entries WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row[0] for row in rows]
