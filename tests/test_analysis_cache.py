"""
Analysis cache: request hashing, backends and the cache service.

Covers:
    - compute_analysis_hash identity fields and whitespace normalization
    - MemoryCacheBackend hit counting, TTL expiry, concurrent reads
    - RedisCacheBackend against an in-process fake client
    - DatabaseCacheBackend against the test SQLite database
    - create_cache_backend selection and Redis fallback
    - AnalysisCache stats and invalidation
"""

import fnmatch
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from workflow_xray.ai.cache import (
    HASH_LENGTH,
    AnalysisCache,
    CacheEntry,
    DatabaseCacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    compute_analysis_hash,
    create_cache_backend,
    get_default_cache,
)
from workflow_xray.core.exceptions import CacheBackendError


def _request(**overrides):
    request = {
        "description": "Writer drafts a post, editor reviews it, then it is published.",
        "stages": [{"name": "Draft"}, {"name": "Review"}],
        "costContext": {"teamSize": 4, "hourlyRate": 50, "hoursPerStep": 2,
                        "teamContext": "Marketing"},
    }
    request.update(overrides)
    return request


def _entry(analysis_hash="abc123", title="Content Review"):
    return CacheEntry(
        hash=analysis_hash,
        decomposition={"id": "d1", "title": title, "steps": [], "gaps": [], "health": {}},
        metadata={"modelId": "local-stub"},
        cached_at="2026-01-01T00:00:00+00:00",
    )


class FakeRedis:
    """Minimal stand-in for redis.Redis(decode_responses=True)."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = str(value)
        self.expiry[key] = ex
        return True

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key, "0")) + 1)
        self.expiry.setdefault(key, None)
        return int(self.store[key])

    def ttl(self, key):
        if key not in self.store:
            return -2
        expiry = self.expiry.get(key)
        return -1 if expiry is None else expiry

    def expire(self, key, seconds):
        if key not in self.store:
            return False
        self.expiry[key] = seconds
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            self.expiry.pop(key, None)
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def scan_iter(self, match="*"):
        return iter([k for k in list(self.store) if fnmatch.fnmatch(k, match)])

    def pipeline(self):
        return _FakePipeline(self)


class _FakePipeline:
    """Queues client calls and replays them in order on execute()."""

    def __init__(self, client):
        self.client = client
        self.ops = []

    def _queue(self, name, *args, **kwargs):
        self.ops.append((name, args, kwargs))
        return self

    def get(self, key):
        return self._queue("get", key)

    def set(self, key, value, ex=None):
        return self._queue("set", key, value, ex=ex)

    def incr(self, key):
        return self._queue("incr", key)

    def ttl(self, key):
        return self._queue("ttl", key)

    def expire(self, key, seconds):
        return self._queue("expire", key, seconds)

    def execute(self):
        ops, self.ops = self.ops, []
        return [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in ops]


# ═════════════════════════════════════════════════════════════════════════════
# Hashing
# ═════════════════════════════════════════════════════════════════════════════

class TestComputeAnalysisHash:
    def test_deterministic_and_sixteen_hex_chars(self):
        h1 = compute_analysis_hash(_request(), "p1", "m1")
        h2 = compute_analysis_hash(_request(), "p1", "m1")
        assert h1 == h2
        assert len(h1) == HASH_LENGTH
        assert all(c in "0123456789abcdef" for c in h1)

    def test_whitespace_is_collapsed(self):
        a = compute_analysis_hash(_request(description="Draft  the\n\tpost "), "p1", "m1")
        b = compute_analysis_hash(_request(description="Draft the post"), "p1", "m1")
        assert a == b

    def test_rate_and_hours_do_not_affect_key(self):
        base = compute_analysis_hash(_request(), "p1", "m1")
        changed = _request()
        changed["costContext"]["hourlyRate"] = 500
        changed["costContext"]["hoursPerStep"] = 9
        assert compute_analysis_hash(changed, "p1", "m1") == base

    def test_team_size_affects_key(self):
        changed = _request()
        changed["costContext"]["teamSize"] = 5
        assert compute_analysis_hash(changed, "p1", "m1") != compute_analysis_hash(_request(), "p1", "m1")

    def test_team_context_affects_key(self):
        changed = _request()
        changed["costContext"]["teamContext"] = "Sales"
        assert compute_analysis_hash(changed, "p1", "m1") != compute_analysis_hash(_request(), "p1", "m1")

    def test_stages_affect_key(self):
        changed = _request(stages=[{"name": "Draft"}])
        assert compute_analysis_hash(changed, "p1", "m1") != compute_analysis_hash(_request(), "p1", "m1")

    def test_prompt_version_and_model_affect_key(self):
        base = compute_analysis_hash(_request(), "p1", "m1")
        assert compute_analysis_hash(_request(), "p2", "m1") != base
        assert compute_analysis_hash(_request(), "p1", "m2") != base

    def test_missing_cost_context_equals_empty(self):
        a = compute_analysis_hash({"description": "x"}, "p1", "m1")
        b = compute_analysis_hash({"description": "x", "costContext": {}}, "p1", "m1")
        assert a == b


# ═════════════════════════════════════════════════════════════════════════════
# Backends
# ═════════════════════════════════════════════════════════════════════════════

class TestMemoryBackend:
    def test_miss_returns_none(self):
        assert MemoryCacheBackend().get("nope") is None

    def test_hit_count_increments_per_read(self):
        backend = MemoryCacheBackend()
        backend.set("abc123", _entry())
        assert [backend.get("abc123").hit_count for _ in range(3)] == [1, 2, 3]

    def test_returned_entries_are_copies(self):
        backend = MemoryCacheBackend()
        backend.set("abc123", _entry())
        backend.get("abc123").decomposition["title"] = "Mutated"
        assert backend.get("abc123").decomposition["title"] == "Content Review"

    def test_cached_at_round_trips_verbatim(self):
        backend = MemoryCacheBackend()
        backend.set("abc123", _entry())
        assert backend.get("abc123").cached_at == "2026-01-01T00:00:00+00:00"

    def test_concurrent_reads_lose_no_increments(self):
        backend = MemoryCacheBackend()
        backend.set("abc123", _entry())
        with ThreadPoolExecutor(max_workers=8) as pool:
            counts = list(pool.map(lambda _: backend.get("abc123").hit_count, range(200)))
        assert sorted(counts) == list(range(1, 201))

    def test_expired_entry_is_a_miss(self, monkeypatch):
        backend = MemoryCacheBackend(ttl_seconds=10)
        backend.set("abc123", _entry())
        real_monotonic = time.monotonic
        monkeypatch.setattr("workflow_xray.ai.cache.time.monotonic", lambda: real_monotonic() + 11)
        assert backend.get("abc123") is None
        assert backend.count() == 0

    def test_set_overwrites(self):
        backend = MemoryCacheBackend()
        backend.set("abc123", _entry(title="First"))
        backend.set("abc123", _entry(title="Second"))
        assert backend.get("abc123").decomposition["title"] == "Second"

    def test_delete_and_clear(self):
        backend = MemoryCacheBackend()
        backend.set("a", _entry("a"))
        backend.set("b", _entry("b"))
        backend.delete("a")
        assert backend.get("a") is None
        assert backend.clear() == 1
        assert backend.count() == 0

    def test_delete_reports_whether_entry_existed(self):
        backend = MemoryCacheBackend()
        backend.set("a", _entry("a"))
        assert backend.delete("a") == 1
        assert backend.delete("a") == 0


class TestRedisBackend:
    def test_round_trip_and_hit_count(self):
        client = FakeRedis()
        backend = RedisCacheBackend(client, ttl_seconds=60)
        backend.set("abc123", _entry())
        assert client.expiry["xray:analysis:abc123"] == 60
        first = backend.get("abc123")
        second = backend.get("abc123")
        assert first.hit_count == 1
        assert second.hit_count == 2
        assert second.decomposition["title"] == "Content Review"
        assert second.cached_at == "2026-01-01T00:00:00+00:00"

    def test_miss_returns_none(self):
        assert RedisCacheBackend(FakeRedis()).get("nope") is None

    def test_count_ignores_hit_counters(self):
        client = FakeRedis()
        backend = RedisCacheBackend(client)
        backend.set("a", _entry("a"))
        backend.set("b", _entry("b"))
        assert backend.count() == 2
        assert backend.clear() == 2
        assert client.store == {}

    def test_delete_removes_counter(self):
        client = FakeRedis()
        backend = RedisCacheBackend(client)
        backend.set("a", _entry("a"))
        backend.get("a")
        backend.delete("a")
        assert client.store == {}

    def test_unreadable_entry_is_discarded(self):
        client = FakeRedis()
        client.set("xray:analysis:bad", "{not json")
        backend = RedisCacheBackend(client)
        assert backend.get("bad") is None
        assert "xray:analysis:bad" not in client.store

    def test_hit_counter_expires_with_entry(self):
        client = FakeRedis()
        backend = RedisCacheBackend(client, ttl_seconds=60)
        backend.set("abc123", _entry())
        client.expiry["xray:analysis:abc123"] = 42
        client.delete("xray:analysis:abc123:hits")
        backend.get("abc123")
        assert client.store["xray:analysis:abc123:hits"] == "1"
        assert client.expiry["xray:analysis:abc123:hits"] == 42

    def test_miss_creates_no_counter(self):
        client = FakeRedis()
        RedisCacheBackend(client).get("gone")
        assert "xray:analysis:gone:hits" not in client.store

    def test_delete_reports_whether_entry_existed(self):
        backend = RedisCacheBackend(FakeRedis())
        backend.set("a", _entry("a"))
        assert backend.delete("a") == 1
        assert backend.delete("a") == 0


class TestDatabaseBackend:
    def test_round_trip_and_hit_count(self):
        backend = DatabaseCacheBackend(ttl_seconds=60)
        backend.set("abc123", _entry())
        assert backend.get("abc123").hit_count == 1
        entry = backend.get("abc123")
        assert entry.hit_count == 2
        assert entry.decomposition["title"] == "Content Review"
        assert entry.metadata == {"modelId": "local-stub"}
        assert entry.cached_at == "2026-01-01T00:00:00+00:00"

    def test_miss_returns_none(self):
        assert DatabaseCacheBackend().get("nope") is None

    def test_set_overwrites_existing_row(self):
        backend = DatabaseCacheBackend()
        backend.set("abc123", _entry(title="First"))
        backend.set("abc123", _entry(title="Second"))
        assert backend.count() == 1
        assert backend.get("abc123").decomposition["title"] == "Second"

    def test_expired_row_is_a_miss(self):
        backend = DatabaseCacheBackend(ttl_seconds=-1)
        backend.set("abc123", _entry())
        assert backend.get("abc123") is None

    def test_delete_and_clear(self):
        backend = DatabaseCacheBackend()
        backend.set("a", _entry("a"))
        backend.set("b", _entry("b"))
        backend.delete("a")
        assert backend.count() == 1
        assert backend.clear() == 1
        assert backend.count() == 0

    def test_delete_reports_whether_row_existed(self):
        backend = DatabaseCacheBackend()
        backend.set("a", _entry("a"))
        assert backend.delete("a") == 1
        assert backend.delete("a") == 0


class TestCreateCacheBackend:
    def test_memory_is_default(self):
        backend = create_cache_backend({})
        assert isinstance(backend, MemoryCacheBackend)

    def test_ttl_is_configurable(self):
        backend = create_cache_backend({"ANALYSIS_CACHE_BACKEND": "memory",
                                        "ANALYSIS_CACHE_TTL_SECONDS": 30})
        assert backend.ttl_seconds == 30

    def test_database_backend(self):
        backend = create_cache_backend({"ANALYSIS_CACHE_BACKEND": "database"})
        assert isinstance(backend, DatabaseCacheBackend)

    def test_unreachable_redis_falls_back_to_memory(self):
        backend = create_cache_backend({"ANALYSIS_CACHE_BACKEND": "redis",
                                        "REDIS_URL": "redis://127.0.0.1:1/0"})
        assert isinstance(backend, MemoryCacheBackend)

    def test_unknown_backend_raises(self):
        with pytest.raises(CacheBackendError):
            create_cache_backend({"ANALYSIS_CACHE_BACKEND": "memcached"})


# ═════════════════════════════════════════════════════════════════════════════
# Cache service
# ═════════════════════════════════════════════════════════════════════════════

class TestAnalysisCache:
    def test_stats_track_hits_and_misses(self):
        cache = AnalysisCache(MemoryCacheBackend(ttl_seconds=120))
        cache.get_cached_analysis("abc123")
        cache.set_cached_analysis("abc123", _entry())
        cache.get_cached_analysis("abc123")
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["hit_rate_pct"] == 50.0
        assert stats["entries"] == 1
        assert stats["backend"] == "memory"
        assert stats["ttl_seconds"] == 120

    def test_empty_stats(self):
        stats = AnalysisCache().get_stats()
        assert stats["hit_rate_pct"] == 0.0
        assert stats["entries"] == 0

    def test_invalidate_single_and_all(self):
        cache = AnalysisCache()
        for h in ("a", "b", "c"):
            cache.set_cached_analysis(h, _entry(h))
        assert cache.invalidate("a") == 1
        assert cache.get_cached_analysis("a") is None
        assert cache.invalidate() == 2
        assert cache.get_stats()["invalidations"] == 3

    def test_invalidate_absent_hash_reports_zero(self):
        cache = AnalysisCache()
        cache.set_cached_analysis("a", _entry("a"))
        assert cache.invalidate("missing") == 0
        assert cache.get_stats()["invalidations"] == 0
        assert cache.get_stats()["entries"] == 1

    def test_default_cache_is_app_cache_in_context(self, app):
        assert get_default_cache() is app.extensions["analysis_cache"]
