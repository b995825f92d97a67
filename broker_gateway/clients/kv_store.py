"""SQLite-backed key/value store with per-entry expiry."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Optional


class SQLiteKVStore:
    """Key to text-blob store; expired entries read as absent and are pruned lazily."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """
            )

    @staticmethod
    def _expiry(ttl_seconds: Optional[int]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return time.time() + ttl_seconds

    def put(self, key: str, value: str, *, ttl_seconds: Optional[int] = None) -> None:
        if not key:
            raise ValueError("Key must be a non-empty string")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_entries (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, value, self._expiry(ttl_seconds)),
            )

    def put_if_absent(
        self, key: str, value: str, *, ttl_seconds: Optional[int] = None
    ) -> bool:
        """Insert ``key`` only when no live entry exists. Returns whether it was written."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM kv_entries WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (key, time.time()),
            )
            cursor = conn.execute(
                "INSERT OR IGNORE INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._expiry(ttl_seconds)),
            )
            return cursor.rowcount == 1

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, expires_at FROM kv_entries WHERE key = ?",
                (key,),
            ).fetchone()
            if not row:
                return None
            if row["expires_at"] is not None and row["expires_at"] <= time.time():
                conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                return None
        return row["value"]

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))

    def pop(self, key: str) -> Optional[str]:
        """Return and remove the live value stored at ``key``; only one caller wins."""
        value = self.get(key)
        if value is None:
            return None
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
            if cursor.rowcount != 1:
                return None
        return value


__all__ = ["SQLiteKVStore"]
