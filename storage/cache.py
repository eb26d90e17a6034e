"""
SQLite response cache and the cached, rate-limit-aware GET used by the hosting API client.
Stores decoded JSON bodies keyed by a caller-chosen string, with a write timestamp for TTL checks.
"""

import os
import sqlite3
import json
import time
import threading
import logging
from typing import Optional, Any, Dict

from .retry import perform_request_with_retries, RetryPolicy

log = logging.getLogger(__name__)

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS api_cache (
    key TEXT PRIMARY KEY,
    response TEXT,
    status INTEGER,
    timestamp REAL
);
"""


class Cache:
    def __init__(self, path: Optional[str] = None, max_entries: Optional[int] = None, ttl_seconds: Optional[float] = None):
        """Create a cache instance.

        :param path: SQLite file path or None for in-memory.
        :param max_entries: optional maximum number of entries; oldest entries are pruned when exceeded.
        :param ttl_seconds: optional TTL in seconds; older entries are treated as missing and pruned on write.
        """
        self.path = path or ':memory:'
        if self.path != ':memory:' and os.path.dirname(self.path):
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.RLock()
        self.max_entries = int(max_entries) if max_entries is not None else None
        self.ttl_seconds = float(ttl_seconds) if ttl_seconds is not None else None
        with self._lock:
            self.conn.executescript(SQL_CREATE)
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # noinspection SqlResolve
    def stats(self) -> Dict[str, Any]:
        """Return entry count plus oldest/newest write timestamps."""
        with self._lock:
            cur = self.conn.execute('SELECT COUNT(1), MIN(timestamp), MAX(timestamp) FROM api_cache')
            count, oldest, newest = cur.fetchone()
        return {'path': self.path, 'count': int(count or 0), 'oldest': oldest, 'newest': newest}

    # noinspection SqlWithoutWhere
    def clear(self) -> int:
        """Delete every entry and return how many were removed."""
        with self._lock:
            cur = self.conn.execute('DELETE FROM api_cache')
            self.conn.commit()
            return cur.rowcount

    # noinspection SqlResolve
    def delete_key(self, key: str) -> int:
        with self._lock:
            cur = self.conn.execute('DELETE FROM api_cache WHERE key = ?', (key,))
            self.conn.commit()
            return cur.rowcount

    # noinspection SqlResolve
    def get(self, key: str, max_age: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Return {'response', 'status', 'timestamp'} or None when missing or older than max_age/TTL."""
        with self._lock:
            row = self.conn.execute('SELECT response, status, timestamp FROM api_cache WHERE key = ?', (key,)).fetchone()
        if not row:
            return None
        response, status, timestamp = row
        age = time.time() - float(timestamp or 0)
        limits = [v for v in (max_age, self.ttl_seconds) if v is not None]
        if limits and age > min(limits):
            return None
        try:
            parsed = json.loads(response)
        except (TypeError, ValueError):
            parsed = response
        return {'response': parsed, 'status': status, 'timestamp': timestamp}

    # noinspection SqlResolve
    def _prune(self):
        if self.ttl_seconds is not None:
            self.conn.execute('DELETE FROM api_cache WHERE timestamp < ?', (time.time() - self.ttl_seconds,))
        if self.max_entries is not None:
            count = self.conn.execute('SELECT COUNT(1) FROM api_cache').fetchone()[0] or 0
            excess = count - self.max_entries
            if excess > 0:
                self.conn.execute(
                    'DELETE FROM api_cache WHERE key IN (SELECT key FROM api_cache ORDER BY timestamp ASC LIMIT ?)', (excess,)
                )

    # noinspection SqlResolve
    def set(self, key: str, response: Any, status: int = 200):
        try:
            payload = json.dumps(response)
        except (TypeError, ValueError):
            payload = json.dumps(str(response))
        with self._lock:
            self.conn.execute(
                'REPLACE INTO api_cache(key, response, status, timestamp) VALUES (?, ?, ?, ?)', (key, payload, status, time.time())
            )
            self._prune()
            self.conn.commit()


def rate_limited_get(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    session=None,
    cache: Optional[Cache] = None,
    cache_key: Optional[str] = None,
    max_age: Optional[float] = None,
    timeout: Optional[float] = None,
    policy: Optional[RetryPolicy] = None,
) -> Dict[str, Any]:
    """Public API: perform a GET with caching, rate-limit handling, and retries.

    A fresh cached entry short-circuits the request. Only 2xx responses are cached.
    """
    if cache is not None and cache_key:
        cached = cache.get(cache_key, max_age=max_age)
        if cached is not None:
            log.debug("cache hit for %s", cache_key)
            return cached

    result = perform_request_with_retries(url, headers=headers, params=params, session=session, timeout=timeout, policy=policy)
    if cache is not None and cache_key and 200 <= result.get('status', 0) < 300:
        cache.set(cache_key, result.get('response'), result.get('status'))
    return result


__all__ = ["Cache", "rate_limited_get"]
