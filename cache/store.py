"""
cache/store.py -- Key-value cache backends for the read-through query layer.

Both backends expose the same small surface: get / set / delete / exists /
flush, plus a tag index (add_to_index / pop_index) so every cached list or
search key can be found again and deleted when the underlying entity set
changes. Neither store supports deleting by a wildcard pattern; the tag index
is how list caches are invalidated.

Each tag also carries a generation counter. pop_index() takes the members,
empties the index and bumps the generation in one atomic step, so a reader
that snapshotted generation() before computing can tell its result predates
the invalidation.

  SQLiteCache -- local SQLite file (or :memory:) with a per-entry expiry.
                 Default backend; no extra service to run.
  RedisCache  -- redis-py client. SETEX for entries, one SET per tag for the
                 index.

Usage:
    cache = create_cache("sqlite:///angolageo_cache.db")
    cache.set("provinces:list:1:15::::name:asc", envelope, ttl=3600)
    cache.add_to_index("provinces", "provinces:list:1:15::::name:asc")
    cache.get("provinces:list:1:15::::name:asc")     # returns dict or None
    cache.delete(*cache.pop_index("provinces"))
    cache.purge_expired()                             # SQLite only; Redis expires natively
"""

import json
import sqlite3
import threading
import time
from typing import Optional, Protocol

import redis

_MEMORY = ":memory:"

_DDL = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key         TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS cache_index (
    tag         TEXT NOT NULL,
    key         TEXT NOT NULL,
    PRIMARY KEY (tag, key)
);
CREATE TABLE IF NOT EXISTS cache_generations (
    tag         TEXT PRIMARY KEY,
    generation  INTEGER NOT NULL
);
"""


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[dict]: ...

    def set(self, key: str, value: dict, ttl: int) -> None: ...

    def delete(self, *keys: str) -> int: ...

    def exists(self, key: str) -> bool: ...

    def flush(self) -> None: ...

    def add_to_index(self, tag: str, key: str) -> None: ...

    def pop_index(self, tag: str) -> list[str]: ...

    def generation(self, tag: str) -> int: ...

    def purge_expired(self) -> int: ...

    def close(self) -> None: ...


class SQLiteCache:
    """SQLite-backed cache. One connection shared across request threads.

    The connection is opened with check_same_thread=False; a lock serializes
    statements so two worker threads never interleave on the same cursor.
    """

    def __init__(self, db_path: str = _MEMORY) -> None:
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        if db_path != _MEMORY:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[dict]:
        """Return cached data for key if it exists and hasn't expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT data, expires_at FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            data, expires_at = row
            if time.time() >= expires_at:
                self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                self._conn.commit()
                return None
        return json.loads(data)

    def set(self, key: str, value: dict, ttl: int) -> None:
        """Store value under key for ttl seconds, replacing any existing entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, data, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), time.time() + ttl),
            )
            self._conn.commit()

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._lock:
            cursor = self._conn.executemany("DELETE FROM cache_entries WHERE key = ?", [(k,) for k in keys])
            self._conn.commit()
        return cursor.rowcount

    def exists(self, key: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM cache_entries WHERE key = ? AND expires_at > ?",
                (key, time.time()),
            ).fetchone()
        return row is not None

    def flush(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM cache_entries")
            self._conn.execute("DELETE FROM cache_index")
            self._conn.commit()

    def add_to_index(self, tag: str, key: str) -> None:
        with self._lock:
            self._conn.execute("INSERT OR IGNORE INTO cache_index (tag, key) VALUES (?, ?)", (tag, key))
            self._conn.commit()

    def pop_index(self, tag: str) -> list[str]:
        """Return every key under tag, empty the index and bump its generation.

        One transaction under the lock; a concurrent add_to_index lands either
        before (and is returned) or after (and survives for the next pop).
        """
        with self._lock:
            with self._conn:
                rows = self._conn.execute("SELECT key FROM cache_index WHERE tag = ? ORDER BY key", (tag,)).fetchall()
                self._conn.execute("DELETE FROM cache_index WHERE tag = ?", (tag,))
                self._conn.execute(
                    "INSERT INTO cache_generations (tag, generation) VALUES (?, 1) "
                    "ON CONFLICT(tag) DO UPDATE SET generation = generation + 1",
                    (tag,),
                )
        return [r[0] for r in rows]

    def generation(self, tag: str) -> int:
        with self._lock:
            row = self._conn.execute("SELECT generation FROM cache_generations WHERE tag = ?", (tag,)).fetchone()
        return row[0] if row is not None else 0

    def purge_expired(self) -> int:
        """Delete expired entries and index rows pointing at them. Returns entries removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (time.time(),))
            self._conn.execute("DELETE FROM cache_index WHERE key NOT IN (SELECT key FROM cache_entries)")
            self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()


class RedisCache:
    """Redis-backed cache. Entries use SETEX; each tag index is a Redis SET."""

    def __init__(self, url: str, prefix: str = "angolageo:") -> None:
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self._prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _index_key(self, tag: str) -> str:
        return f"{self._prefix}index:{tag}"

    def _generation_key(self, tag: str) -> str:
        return f"{self._prefix}gen:{tag}"

    def get(self, key: str) -> Optional[dict]:
        raw = self._client.get(self._k(key))
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: dict, ttl: int) -> None:
        self._client.setex(self._k(key), ttl, json.dumps(value))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._client.delete(*[self._k(k) for k in keys]))

    def exists(self, key: str) -> bool:
        return self._client.exists(self._k(key)) == 1

    def flush(self) -> None:
        # Only our own namespace; the Redis database may be shared.
        names = list(self._client.scan_iter(match=f"{self._prefix}*"))
        if names:
            self._client.delete(*names)

    def add_to_index(self, tag: str, key: str) -> None:
        self._client.sadd(self._index_key(tag), key)

    def pop_index(self, tag: str) -> list[str]:
        # MULTI/EXEC: members, index removal and generation bump apply together.
        pipe = self._client.pipeline(transaction=True)
        pipe.smembers(self._index_key(tag))
        pipe.delete(self._index_key(tag))
        pipe.incr(self._generation_key(tag))
        members, _, _ = pipe.execute()
        return sorted(members)

    def generation(self, tag: str) -> int:
        raw = self._client.get(self._generation_key(tag))
        return int(raw) if raw is not None else 0

    def purge_expired(self) -> int:
        return 0

    def close(self) -> None:
        self._client.close()


def create_cache(url: str) -> CacheBackend:
    """Build the cache backend named by url.

    redis://... and rediss://...  -> RedisCache
    sqlite:///<path>              -> SQLiteCache on that file
    sqlite:///:memory:            -> SQLiteCache in memory
    """
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisCache(url)
    if url.startswith("sqlite:///"):
        return SQLiteCache(url[len("sqlite:///") :] or _MEMORY)
    raise ValueError(f"Unsupported cache URL: {url!r}")
