"""Key-value stores backing the local tour cache."""

import sqlite3
from datetime import datetime
from typing import Optional, Protocol

from .errors import QuotaError


def _size(value: str) -> int:
    return len(value.encode("utf-8"))


class KeyValueStore(Protocol):
    """Capability handed to the repository; the only mutable shared resource"""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """In-memory store with an optional byte quota"""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self.data: dict[str, str] = {}
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str):
        if self.quota_bytes is not None:
            used = sum(_size(v) for k, v in self.data.items() if k != key)
            if used + _size(value) > self.quota_bytes:
                raise QuotaError(f"Writing {key} would exceed quota of {self.quota_bytes} bytes")
        self.data[key] = value
        self.writes += 1

    def remove(self, key: str):
        self.data.pop(key, None)

    def used_bytes(self) -> int:
        return sum(_size(v) for v in self.data.values())


class SQLiteStore:
    """SQLite-backed key-value store with an optional byte quota"""

    def __init__(self, db_path: str = "walkscape_cache.db", quota_bytes: Optional[int] = None):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.quota_bytes = quota_bytes
        self._init_schema()

    def _init_schema(self):
        """Create database tables"""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                bytes INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self.conn.commit()

    def get(self, key: str) -> Optional[str]:
        cursor = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str):
        size = _size(value)
        if self.quota_bytes is not None:
            cursor = self.conn.execute("SELECT COALESCE(SUM(bytes), 0) FROM kv WHERE key != ?", (key,))
            used = cursor.fetchone()[0]
            if used + size > self.quota_bytes:
                raise QuotaError(f"Writing {key} would exceed quota of {self.quota_bytes} bytes")
        now = datetime.now().isoformat()
        self.conn.execute("""
            INSERT INTO kv (key, value, bytes, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                bytes = excluded.bytes,
                updated_at = excluded.updated_at
        """, (key, value, size, now))
        self.conn.commit()

    def remove(self, key: str):
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    def used_bytes(self) -> int:
        cursor = self.conn.execute("SELECT COALESCE(SUM(bytes), 0) FROM kv")
        return cursor.fetchone()[0]

    def close(self):
        self.conn.close()
