"""
cache/query.py -- Read-through cache wrapper for list, detail and search reads.

No HTTP concerns live here. The geo service builds a key with build_key(),
then hands QueryCache.fetch() a zero-argument callable that runs the real
query and assembles the response envelope. On a hit the stored envelope is
returned verbatim; on a miss the callable runs and its result is written back
with a TTL and recorded under every tag passed in.

The cache is best-effort. Any exception raised by the backend is logged and
treated as a miss (reads) or skipped (writes, index updates, deletes). Errors
raised by the compute callable itself are never swallowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, Optional

from cache.store import CacheBackend

logger = logging.getLogger("angolageo.cache")

# TTLs in seconds
LIST_TTL = 60 * 60
DETAIL_TTL = 60 * 60
SEARCH_TTL = 30 * 60
STATS_TTL = 60 * 60
METRICS_TTL = 5 * 60

# Tag indexes. Every cached key is recorded under one or more of these so a
# mutation can find and delete it.
TAG_PROVINCES = "provinces"
TAG_MUNICIPALITIES = "municipalities"
TAG_SEARCH = "search"
TAG_STATS = "stats"


def build_key(namespace: str, *parts: Any) -> str:
    """Join namespace and every part with ':' in the order given.

    None becomes the empty string; a part is never dropped, so
    ("a", None, "b") and ("a", "b", None) produce different keys.
    """
    return ":".join([namespace, *("" if p is None else str(p) for p in parts)])


class QueryCache:
    def __init__(self, backend: CacheBackend) -> None:
        self.backend = backend

    def fetch(
        self,
        key: str,
        ttl: int,
        compute: Callable[[], dict],
        tags: Iterable[str] = (),
    ) -> dict:
        """Return the cached envelope for key, or compute, store and return it.

        The tag generations are read before compute() runs. If any tag is
        invalidated while the query is in flight, the result is returned to
        this caller but never written back, so the next read recomputes.
        """
        cached = self._safe_get(key)
        if cached is not None:
            return cached

        tags = list(tags)
        before = self._generations(tags)

        value = compute()

        if before is None or self._generations(tags) != before:
            logger.debug("Skipping cache write for %s; tags invalidated during compute", key)
            return value
        try:
            self.backend.set(key, value, ttl)
            for tag in tags:
                self.backend.add_to_index(tag, key)
            # An invalidation between the check above and the index write
            # would miss this key; drop it if the generation moved.
            if self._generations(tags) != before:
                self.backend.delete(key)
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)
        return value

    def invalidate(self, tags: Iterable[str] = (), keys: Iterable[str] = ()) -> int:
        """Delete every key recorded under each tag, then the explicit keys.

        Returns the number of keys deletion was attempted for. Never raises.
        """
        tags = list(tags)
        attempted = 0
        for tag in tags:
            try:
                members = self.backend.pop_index(tag)
                if members:
                    self.backend.delete(*members)
                attempted += len(members)
            except Exception:
                logger.warning("Cache invalidation failed for tag %s", tag, exc_info=True)
        explicit = list(keys)
        if explicit:
            try:
                self.backend.delete(*explicit)
                attempted += len(explicit)
            except Exception:
                logger.warning("Cache delete failed for %s", explicit, exc_info=True)
        if attempted:
            logger.debug("Invalidated %d cache keys (tags=%s)", attempted, tags)
        return attempted

    def healthy(self) -> bool:
        try:
            self.backend.exists("health:check")
        except Exception:
            logger.error("Cache health check failed", exc_info=True)
            return False
        return True

    def _safe_get(self, key: str) -> Optional[dict]:
        try:
            return self.backend.get(key)
        except Exception:
            logger.warning("Cache read failed for %s; falling through to store", key, exc_info=True)
            return None

    def _generations(self, tags: list[str]) -> Optional[tuple[int, ...]]:
        """Snapshot the generation of every tag; None when the backend is unreachable."""
        try:
            return tuple(self.backend.generation(tag) for tag in tags)
        except Exception:
            logger.warning("Cache generation read failed for %s", tags, exc_info=True)
            return None
