"""Unit tests for cache/query.py and cache/store.py -- the read-through layer.

Covers:
- build_key() keeps every part in order and serializes None as ""
- QueryCache.fetch() computes once, then serves the stored envelope verbatim
- QueryCache.invalidate() deletes every key recorded under a tag
- a result computed across an invalidation is returned but never stored
- backend failures on get/set/index/delete never reach the caller
- compute() errors are not swallowed and nothing is cached for them
- SQLiteCache expiry, purge_expired() and flush()
- create_cache() backend selection
"""

from unittest.mock import MagicMock

import pytest

from cache.query import QueryCache, build_key
from cache.store import RedisCache, SQLiteCache, create_cache
from core.errors import NotFound

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend():
    b = SQLiteCache(":memory:")
    yield b
    b.close()


@pytest.fixture
def cache(backend):
    return QueryCache(backend)


def _failing_backend() -> MagicMock:
    """A backend whose every operation raises, as if the cache server were down."""
    b = MagicMock()
    for name in ("get", "set", "delete", "exists", "add_to_index", "pop_index", "generation"):
        getattr(b, name).side_effect = ConnectionError("cache down")
    return b


# ---------------------------------------------------------------------------
# build_key
# ---------------------------------------------------------------------------


class TestBuildKey:
    def test_parts_joined_in_order(self) -> None:
        assert build_key("provinces", 1, 15, "lua", "Norte", "name", "asc") == "provinces:1:15:lua:Norte:name:asc"

    def test_none_serializes_as_empty_string(self) -> None:
        assert build_key("provinces", 1, 15, None, None, "name", "asc") == "provinces:1:15:::name:asc"

    def test_missing_parts_never_collide(self) -> None:
        """A search term and a region filter in the same position set must not share a key."""
        only_search = build_key("provinces", 1, 15, "Norte", None, "name", "asc")
        only_region = build_key("provinces", 1, 15, None, "Norte", "name", "asc")
        assert only_search != only_region

    def test_namespace_only(self) -> None:
        assert build_key("api", "stats") == "api:stats"


# ---------------------------------------------------------------------------
# QueryCache.fetch
# ---------------------------------------------------------------------------


class TestFetch:
    def test_miss_computes_and_stores(self, cache: QueryCache, backend: SQLiteCache) -> None:
        compute = MagicMock(return_value={"success": True, "data": [1]})
        result = cache.fetch("k1", 60, compute, tags=("provinces",))
        assert result == {"success": True, "data": [1]}
        assert compute.call_count == 1
        assert backend.get("k1") == {"success": True, "data": [1]}
        assert backend.pop_index("provinces") == ["k1"]

    def test_hit_skips_compute(self, cache: QueryCache) -> None:
        compute = MagicMock(return_value={"n": 1})
        cache.fetch("k2", 60, compute)
        compute.return_value = {"n": 2}
        second = cache.fetch("k2", 60, compute)
        assert second == {"n": 1}, "A hit must return the stored envelope, not a fresh one"
        assert compute.call_count == 1

    def test_expired_entry_recomputes(self, cache: QueryCache, backend: SQLiteCache) -> None:
        backend.set("k3", {"old": True}, ttl=-1)
        compute = MagicMock(return_value={"old": False})
        assert cache.fetch("k3", 60, compute) == {"old": False}
        compute.assert_called_once()

    def test_compute_error_propagates_and_is_not_cached(self, cache: QueryCache, backend: SQLiteCache) -> None:
        def boom() -> dict:
            raise NotFound("Província não encontrada")

        with pytest.raises(NotFound):
            cache.fetch("province:x", 60, boom, tags=("provinces",))
        assert backend.get("province:x") is None
        assert backend.pop_index("provinces") == []


# ---------------------------------------------------------------------------
# QueryCache.invalidate
# ---------------------------------------------------------------------------


class TestInvalidate:
    def test_deletes_every_key_under_tag(self, cache: QueryCache, backend: SQLiteCache) -> None:
        for key in ("provinces:1:15::::name:asc", "provinces:2:15::::name:asc"):
            cache.fetch(key, 60, lambda: {"x": 1}, tags=("provinces",))
        cache.fetch("municipalities:1:15:::::name:asc", 60, lambda: {"x": 2}, tags=("municipalities",))

        removed = cache.invalidate(tags=["provinces"])

        assert removed == 2
        assert backend.get("provinces:1:15::::name:asc") is None
        assert backend.get("provinces:2:15::::name:asc") is None
        assert backend.pop_index("provinces") == []
        assert backend.get("municipalities:1:15:::::name:asc") == {"x": 2}, "Other tags must survive"

    def test_key_under_two_tags_removed_by_either(self, cache: QueryCache, backend: SQLiteCache) -> None:
        cache.fetch("province:p1:municipalities:1:15:::name:asc", 60, lambda: {"x": 1}, tags=("provinces", "municipalities"))
        cache.invalidate(tags=["municipalities"])
        assert backend.get("province:p1:municipalities:1:15:::name:asc") is None

    def test_explicit_keys(self, cache: QueryCache, backend: SQLiteCache) -> None:
        backend.set("province:abc", {"x": 1}, 60)
        cache.invalidate(keys=["province:abc"])
        assert backend.get("province:abc") is None

    def test_accepts_generators(self, cache: QueryCache, backend: SQLiteCache) -> None:
        cache.fetch("a", 60, lambda: {}, tags=("search",))
        cache.invalidate(tags=(t for t in ["search"]))
        assert backend.get("a") is None


class TestInvalidateDuringCompute:
    """A write that lands while a read is computing must win over that read."""

    def test_result_is_not_written_back(self, cache: QueryCache, backend: SQLiteCache) -> None:
        state = {"v": "old"}

        def compute() -> dict:
            snapshot = dict(state)
            state["v"] = "new"
            cache.invalidate(tags=["provinces"])
            return snapshot

        assert cache.fetch("provinces:1:15::::name:asc", 60, compute, tags=("provinces",)) == {"v": "old"}
        assert backend.get("provinces:1:15::::name:asc") is None, "A result computed across an invalidation must not be cached"

        after = cache.fetch("provinces:1:15::::name:asc", 60, lambda: dict(state), tags=("provinces",))
        assert after == {"v": "new"}

    def test_other_tags_do_not_block_the_write(self, cache: QueryCache, backend: SQLiteCache) -> None:
        def compute() -> dict:
            cache.invalidate(tags=["municipalities"])
            return {"v": 1}

        cache.fetch("provinces:1:15::::name:asc", 60, compute, tags=("provinces",))
        assert backend.get("provinces:1:15::::name:asc") == {"v": 1}

    def test_entry_dropped_when_generation_moves_after_write(self, backend: SQLiteCache) -> None:
        """An invalidation between the pre-write check and the index write still evicts the entry."""
        spy = MagicMock(wraps=backend)
        cache = QueryCache(spy)
        real_add = backend.add_to_index

        def add_then_invalidate(tag: str, key: str) -> None:
            backend.pop_index(tag)
            real_add(tag, key)

        spy.add_to_index.side_effect = add_then_invalidate
        cache.fetch("province:p1", 60, lambda: {"v": "old"}, tags=("provinces",))
        assert backend.get("province:p1") is None


# ---------------------------------------------------------------------------
# Failure tolerance
# ---------------------------------------------------------------------------


class TestBackendFailures:
    """The cache is best-effort: a broken backend degrades to always-miss."""

    def test_fetch_falls_through_to_compute(self) -> None:
        cache = QueryCache(_failing_backend())
        compute = MagicMock(return_value={"success": True})
        assert cache.fetch("k", 60, compute, tags=("provinces",)) == {"success": True}
        assert cache.fetch("k", 60, compute) == {"success": True}
        assert compute.call_count == 2

    def test_invalidate_never_raises(self) -> None:
        cache = QueryCache(_failing_backend())
        assert cache.invalidate(tags=["provinces", "search"], keys=["province:1"]) == 0

    def test_healthy_reports_false(self) -> None:
        assert QueryCache(_failing_backend()).healthy() is False

    def test_healthy_reports_true(self, cache: QueryCache) -> None:
        assert cache.healthy() is True


# ---------------------------------------------------------------------------
# SQLiteCache housekeeping
# ---------------------------------------------------------------------------


class TestSQLiteCache:
    def test_purge_expired_removes_stale_entries_and_index_rows(self, backend: SQLiteCache) -> None:
        backend.set("stale", {"x": 1}, ttl=-1)
        backend.add_to_index("provinces", "stale")
        backend.set("fresh", {"x": 2}, ttl=60)
        backend.add_to_index("provinces", "fresh")

        assert backend.purge_expired() == 1
        assert backend.pop_index("provinces") == ["fresh"]
        assert backend.exists("fresh") is True

    def test_flush_clears_entries_and_indexes(self, backend: SQLiteCache) -> None:
        backend.set("a", {"x": 1}, ttl=60)
        backend.add_to_index("stats", "a")
        backend.flush()
        assert backend.get("a") is None
        assert backend.pop_index("stats") == []

    def test_delete_counts_removed_rows(self, backend: SQLiteCache) -> None:
        backend.set("a", {}, 60)
        backend.set("b", {}, 60)
        assert backend.delete("a", "b", "missing") == 2
        assert backend.delete() == 0

    def test_pop_index_empties_tag_and_bumps_generation(self, backend: SQLiteCache) -> None:
        backend.add_to_index("provinces", "b")
        backend.add_to_index("provinces", "a")
        backend.add_to_index("search", "s")
        assert backend.generation("provinces") == 0

        assert backend.pop_index("provinces") == ["a", "b"]

        assert backend.generation("provinces") == 1
        assert backend.generation("search") == 0
        assert backend.pop_index("provinces") == [], "A popped index must be empty"
        assert backend.generation("provinces") == 2
        assert backend.pop_index("search") == ["s"]

    def test_key_indexed_after_pop_survives_for_next_pop(self, backend: SQLiteCache) -> None:
        backend.add_to_index("provinces", "a")
        backend.pop_index("provinces")
        backend.add_to_index("provinces", "late")
        assert backend.pop_index("provinces") == ["late"]


class TestCreateCache:
    def test_sqlite_memory(self) -> None:
        c = create_cache("sqlite:///:memory:")
        assert isinstance(c, SQLiteCache)
        c.close()

    def test_sqlite_file(self, tmp_path) -> None:
        c = create_cache(f"sqlite:///{tmp_path / 'cache.db'}")
        c.set("k", {"v": 1}, 60)
        assert c.get("k") == {"v": 1}
        c.close()

    def test_redis_url_builds_redis_backend_lazily(self) -> None:
        """redis-py connects on first command, so construction needs no server."""
        c = create_cache("redis://localhost:6379/0")
        assert isinstance(c, RedisCache)

    def test_unknown_scheme_rejected(self) -> None:
        with pytest.raises(ValueError):
            create_cache("memcached://localhost")
