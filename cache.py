"""
SQLite-backed key/value cache with per-entry TTL.

Used by planfix_request() for idempotent reads (reports, directories, field lists).
Expiry is checked lazily on read; nothing runs in the background.
"""

import os
import json
import time
import sqlite3
import logging
import threading
from typing import Any, Optional

from config import CACHE_DB_PATH, LOG_FORMAT, LOG_LEVEL

logger = logging.getLogger("planfix-mcp.cache")

DEFAULT_TTL = 3600


class SqliteCache:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        with self._lock, self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS cache (key TEXT PRIMARY KEY, value TEXT, expires_at INTEGER)"
            )

    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None when missing, expired or unreadable."""
        with self._lock:
            row = self._conn.execute("SELECT value, expires_at FROM cache WHERE key = ?", (key,)).fetchone()
            if row is None:
                return None
            value, expires_at = row
            if expires_at and expires_at < _now_ms():
                with self._conn:
                    self._conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            logger.warning("Unreadable cache entry %r, ignored", key)
            return None

    def set(self, key: str, value: Any, ttl: Optional[float] = DEFAULT_TTL) -> None:
        expires_at = _now_ms() + int((ttl if ttl is not None else DEFAULT_TTL) * 1000)
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, payload, expires_at),
            )

    def delete_prefix(self, prefix: str) -> None:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM cache WHERE key LIKE ? ESCAPE '\\'", (escaped + "%",))

    def clear(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM cache")

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _now_ms() -> int:
    return int(time.time() * 1000)


_provider: Optional[SqliteCache] = None
_provider_lock = threading.Lock()


def get_cache_provider() -> SqliteCache:
    """Process-wide cache, created on first use."""
    global _provider
    with _provider_lock:
        if _provider is None:
            directory = os.path.dirname(CACHE_DB_PATH)
            if directory:
                os.makedirs(directory, exist_ok=True)
            _provider = SqliteCache(CACHE_DB_PATH)
        return _provider


def cache_clear() -> None:
    get_cache_provider().clear()
    logger.info("Request cache cleared: %s", CACHE_DB_PATH)


def main() -> None:
    """Entry point for console script planfix-cache-clear."""
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    cache_clear()


if __name__ == "__main__":
    main()
