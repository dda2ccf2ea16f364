"""
cache/store.py -- SQLite-backed TTL key-value store for verification challenges.

Each entry carries its own expiry. An entry past its expiry is never returned
and is deleted on read, so "expired" and "never written" look identical to
callers. put() on an existing key overwrites it and starts a fresh TTL window.

Usage:
    store = ChallengeStore()
    store.put("verification:code:13800138000", "042917", ttl=300)
    store.get("verification:code:13800138000")   # "042917" or None
    store.purge_expired()                        # call periodically to trim old entries

Pass db_path=":memory:" for a private in-process store (tests, single worker).
"""

import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Optional, Union

_DEFAULT_DB = Path(__file__).parent / "cypress_challenges.db"

_DDL = """
CREATE TABLE IF NOT EXISTS challenges (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


class ChallengeStore:
    def __init__(
        self,
        db_path: Union[Path, str] = _DEFAULT_DB,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        # One connection shared across request threads; the lock serializes it.
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        if str(db_path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def put(self, key: str, value: str, ttl: float) -> None:
        """Store value under key for ttl seconds, replacing any existing entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO challenges (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._clock() + ttl),
            )
            self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        """Return the value for key if it exists and hasn't expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires_at FROM challenges WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            value, expires_at = row
            if self._clock() >= expires_at:
                self._conn.execute("DELETE FROM challenges WHERE key = ?", (key,))
                self._conn.commit()
                return None
            return value

    def delete(self, key: str) -> bool:
        """Remove key. Returns True if an entry (live or expired) was removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM challenges WHERE key = ?", (key,))
            self._conn.commit()
            return cursor.rowcount > 0

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM challenges WHERE expires_at <= ?", (self._clock(),))
            self._conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()
