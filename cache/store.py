"""
cache/store.py -- Key-value cache with backend-enforced TTLs.

Sessions and login-attempt counters live here. The auth components never do
their own expiry bookkeeping: if the backend says a key is gone, it is gone.

KeyValueCache is the interface both backends satisfy:
  TTLCache    (this module)        -- SQLite file or :memory:, the default and
                                      the backend used in tests.
  RedisCache  (cache/redis_store)  -- used when REDIS_URL is configured.

Single-key operations are atomic. TTLCache shares one sqlite3 connection
across threads behind a lock; expiry is judged against the injected clock so
tests can fast-forward time.

Usage:
    cache = TTLCache()
    cache.set("session:1:abc", '{"ua": "curl"}', ttl_seconds=3600)
    cache.get("session:1:abc")            # returns str or None
    cache.incr("login_attempts:x", 900)   # atomic +1, TTL reset to 900s
    cache.purge_expired()                 # call periodically to trim old rows
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Protocol

from core.clock import Clock, SystemClock
from core.errors import StoreUnavailable

_DEFAULT_DB = Path(__file__).parent / "warden_cache.db"

_DDL = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    expires_at  REAL
);
"""

# A row is live if it has no expiry or its expiry is in the future.
_LIVE = "(expires_at IS NULL OR expires_at > ?)"


class KeyValueCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...
    def delete(self, *keys: str) -> int: ...
    def expire(self, key: str, ttl_seconds: int) -> bool: ...
    def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int: ...
    def scan(self, pattern: str) -> list[str]: ...
    def close(self) -> None: ...


class TTLCache:
    def __init__(self, db_path: Path | str = _DEFAULT_DB, clock: Optional[Clock] = None, timeout: float = 5.0) -> None:
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=timeout)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def _now(self) -> float:
        return self._clock.now().timestamp()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable("cache store unavailable") from exc

    def get(self, key: str) -> Optional[str]:
        """Return the value for key if it exists and hasn't expired."""
        with self._lock:
            row = self._execute(f"SELECT value FROM kv_cache WHERE key = ? AND {_LIVE}", (key, self._now())).fetchone()
        return row[0] if row is not None else None

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store value under key, replacing any existing entry and its TTL."""
        expires_at = self._now() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            self._execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, expires_at),
            )
            self._conn.commit()

    def delete(self, *keys: str) -> int:
        """Delete keys. Returns how many of them were live."""
        if not keys:
            return 0
        placeholders = ", ".join("?" for _ in keys)
        with self._lock:
            live = self._execute(
                f"SELECT COUNT(*) FROM kv_cache WHERE key IN ({placeholders}) AND {_LIVE}",
                (*keys, self._now()),
            ).fetchone()[0]
            self._execute(f"DELETE FROM kv_cache WHERE key IN ({placeholders})", keys)
            self._conn.commit()
        return live

    def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL of a live key. False if the key does not exist (any more)."""
        now = self._now()
        with self._lock:
            cursor = self._execute(
                f"UPDATE kv_cache SET expires_at = ? WHERE key = ? AND {_LIVE}",
                (now + ttl_seconds, key, now),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """Atomically add 1 to an integer value (missing/expired counts as 0).

        With ttl_seconds, the key's TTL is reset in the same step; without it
        an existing TTL is kept.
        """
        now = self._now()
        with self._lock:
            row = self._execute(
                f"SELECT value, expires_at FROM kv_cache WHERE key = ? AND {_LIVE}", (key, now)
            ).fetchone()
            if row is None:
                value, expires_at = 1, None
            else:
                value, expires_at = int(row[0]) + 1, row[1]
            if ttl_seconds is not None:
                expires_at = now + ttl_seconds
            self._execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, str(value), expires_at),
            )
            self._conn.commit()
        return value

    def scan(self, pattern: str) -> list[str]:
        """Return live keys matching a glob pattern (same syntax as Redis MATCH)."""
        with self._lock:
            rows = self._execute(f"SELECT key FROM kv_cache WHERE key GLOB ? AND {_LIVE}", (pattern, self._now())).fetchall()
        return [r[0] for r in rows]

    def purge_expired(self) -> int:
        """Delete all expired rows. Returns number of rows removed."""
        with self._lock:
            cursor = self._execute("DELETE FROM kv_cache WHERE expires_at IS NOT NULL AND expires_at <= ?", (self._now(),))
            self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()
