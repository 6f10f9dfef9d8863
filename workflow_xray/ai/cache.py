"""
Workflow X-Ray
Analysis cache: request hashing + memoized decompositions.

The key is derived from the request, never from the result:

    description (whitespace-collapsed) + stages + teamSize + teamContext
    + promptVersion + modelId  →  SHA-256  →  first 16 hex chars

hourlyRate / hoursPerStep only enrich the prompt; they never affect the key.

Backends (injectable, all with an atomic hit-count increment on read):
    - MemoryCacheBackend   - dict + threading.Lock, for dev/testing
    - RedisCacheBackend    - JSON entry + INCR counter, for multi-process deploys
    - DatabaseCacheBackend - ``analysis_cache`` table, UPDATE hit_count = hit_count + 1
"""

import copy
import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from threading import Lock

import redis
from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from workflow_xray.core.exceptions import CacheBackendError
from workflow_xray.models import db
from workflow_xray.models.analysis_cache import AnalysisCacheRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 604800  # 7 days
HASH_LENGTH = 16
REDIS_KEY_PREFIX = "xray:analysis:"

_WHITESPACE_RE = re.compile(r"\s+")


# ═════════════════════════════════════════════════════════════════════════════
# Hashing
# ═════════════════════════════════════════════════════════════════════════════

def normalize_description(description: str) -> str:
    return _WHITESPACE_RE.sub(" ", description or "").strip()


def compute_analysis_hash(request: dict, prompt_version: str, model_id: str) -> str:
    """
    Deterministic cache identity for a decomposition request.

    Args:
        request: ``{description, stages?, context?, costContext?}``.
        prompt_version: Content hash of the system prompt.
        model_id: Model the request will be sent to.

    Returns:
        16 lowercase hex characters.
    """
    cost_context = request.get("costContext") or {}
    identity = {
        "description": normalize_description(request.get("description", "")),
        "stages": request.get("stages") or [],
        "teamSize": cost_context.get("teamSize"),
        "teamContext": cost_context.get("teamContext"),
        "promptVersion": prompt_version,
        "modelId": model_id,
    }
    canonical = json.dumps(identity, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_LENGTH]


# ═════════════════════════════════════════════════════════════════════════════
# Cache entry
# ═════════════════════════════════════════════════════════════════════════════

def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class CacheEntry:
    """A memoized pipeline result. ``decomposition`` is the wire-shape dict."""
    hash: str
    decomposition: dict
    metadata: dict = field(default_factory=dict)
    cached_at: str = field(default_factory=utc_timestamp)
    hit_count: int = 0

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "decomposition": self.decomposition,
            "metadata": self.metadata,
            "cachedAt": self.cached_at,
            "hitCount": self.hit_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            hash=data["hash"],
            decomposition=data.get("decomposition") or {},
            metadata=data.get("metadata") or {},
            cached_at=data.get("cachedAt") or utc_timestamp(),
            hit_count=int(data.get("hitCount", 0)),
        )


# ═════════════════════════════════════════════════════════════════════════════
# Backends
# ═════════════════════════════════════════════════════════════════════════════

class MemoryCacheBackend:
    """In-process store; one lock serializes every read-increment and write."""

    name = "memory"

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._store: dict[str, tuple[CacheEntry, float]] = {}  # hash → (entry, expires_at)
        self._lock = Lock()

    def get(self, analysis_hash: str) -> CacheEntry | None:
        with self._lock:
            item = self._store.get(analysis_hash)
            if item is None:
                return None
            entry, expires_at = item
            if time.monotonic() > expires_at:
                del self._store[analysis_hash]
                return None
            entry = replace(entry, hit_count=entry.hit_count + 1)
            self._store[analysis_hash] = (entry, expires_at)
        return copy.deepcopy(entry)

    def set(self, analysis_hash: str, entry: CacheEntry):
        with self._lock:
            self._store[analysis_hash] = (copy.deepcopy(entry), time.monotonic() + self.ttl_seconds)

    def delete(self, analysis_hash: str) -> int:
        with self._lock:
            return 1 if self._store.pop(analysis_hash, None) is not None else 0

    def clear(self) -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
        return count

    def count(self) -> int:
        with self._lock:
            return len(self._store)


class RedisCacheBackend:
    """
    Entry JSON under ``xray:analysis:<hash>``; hit count under ``…:hits``.
    The counter is advanced with INCR so concurrent readers never lose updates.
    """

    name = "redis"

    def __init__(self, client, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(analysis_hash: str) -> str:
        return f"{REDIS_KEY_PREFIX}{analysis_hash}"

    @staticmethod
    def _hits_key(analysis_hash: str) -> str:
        return f"{REDIS_KEY_PREFIX}{analysis_hash}:hits"

    def get(self, analysis_hash: str) -> CacheEntry | None:
        key, hits_key = self._key(analysis_hash), self._hits_key(analysis_hash)
        raw, remaining = self.client.pipeline().get(key).ttl(key).execute()
        if raw is None:
            return None
        # The counter never outlives the entry, even if the entry expired since the read.
        pipe = self.client.pipeline()
        pipe.incr(hits_key)
        pipe.expire(hits_key, remaining if remaining and remaining > 0 else self.ttl_seconds)
        hits, _ = pipe.execute()
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding unreadable cache entry %s", analysis_hash,
                           extra={"analysis_hash": analysis_hash})
            self.delete(analysis_hash)
            return None
        return replace(CacheEntry.from_dict(data), hit_count=int(hits))

    def set(self, analysis_hash: str, entry: CacheEntry):
        pipe = self.client.pipeline()
        pipe.set(self._key(analysis_hash), json.dumps(entry.to_dict()), ex=self.ttl_seconds)
        pipe.set(self._hits_key(analysis_hash), entry.hit_count, ex=self.ttl_seconds)
        pipe.execute()

    def delete(self, analysis_hash: str) -> int:
        removed = self.client.delete(self._key(analysis_hash))
        self.client.delete(self._hits_key(analysis_hash))
        return removed

    def clear(self) -> int:
        keys = list(self.client.scan_iter(match=f"{REDIS_KEY_PREFIX}*"))
        if keys:
            self.client.delete(*keys)
        return sum(1 for k in keys if not k.endswith(":hits"))

    def count(self) -> int:
        return sum(
            1 for k in self.client.scan_iter(match=f"{REDIS_KEY_PREFIX}*")
            if not k.endswith(":hits")
        )


class DatabaseCacheBackend:
    """``analysis_cache`` table via Flask-SQLAlchemy. Needs an app context."""

    name = "database"

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds

    def get(self, analysis_hash: str) -> CacheEntry | None:
        now = datetime.now(timezone.utc)
        updated = AnalysisCacheRecord.query.filter(
            AnalysisCacheRecord.analysis_hash == analysis_hash,
            AnalysisCacheRecord.expires_at > now,
        ).update(
            {AnalysisCacheRecord.hit_count: AnalysisCacheRecord.hit_count + 1},
            synchronize_session=False,
        )
        if not updated:
            db.session.rollback()
            return None
        db.session.commit()

        record = AnalysisCacheRecord.query.filter_by(analysis_hash=analysis_hash).first()
        if record is None:
            return None
        return CacheEntry(
            hash=record.analysis_hash,
            decomposition=json.loads(record.decomposition_json),
            metadata=json.loads(record.metadata_json or "{}"),
            cached_at=record.cached_at,
            hit_count=record.hit_count,
        )

    def _write(self, analysis_hash: str, entry: CacheEntry, expires_at: datetime):
        record = AnalysisCacheRecord.query.filter_by(analysis_hash=analysis_hash).first()
        if record is None:
            record = AnalysisCacheRecord(analysis_hash=analysis_hash)
            db.session.add(record)
        record.decomposition_json = json.dumps(entry.decomposition)
        record.metadata_json = json.dumps(entry.metadata)
        record.cached_at = entry.cached_at
        record.hit_count = entry.hit_count
        record.expires_at = expires_at
        db.session.commit()

    def set(self, analysis_hash: str, entry: CacheEntry):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
        try:
            self._write(analysis_hash, entry, expires_at)
        except IntegrityError:
            # Concurrent insert of the same hash; retry as an update.
            db.session.rollback()
            self._write(analysis_hash, entry, expires_at)

    def delete(self, analysis_hash: str) -> int:
        deleted = AnalysisCacheRecord.query.filter_by(analysis_hash=analysis_hash).delete()
        db.session.commit()
        return deleted

    def clear(self) -> int:
        deleted = AnalysisCacheRecord.query.delete()
        db.session.commit()
        return deleted

    def count(self) -> int:
        return AnalysisCacheRecord.query.count()


def create_cache_backend(config) -> MemoryCacheBackend | RedisCacheBackend | DatabaseCacheBackend:
    """
    Build the backend named by ``ANALYSIS_CACHE_BACKEND``.

    An unreachable Redis falls back to memory with a warning.

    Raises:
        CacheBackendError: for an unknown backend name.
    """
    name = (config.get("ANALYSIS_CACHE_BACKEND") or "memory").lower()
    ttl = int(config.get("ANALYSIS_CACHE_TTL_SECONDS") or DEFAULT_TTL_SECONDS)

    if name == "memory":
        return MemoryCacheBackend(ttl_seconds=ttl)

    if name == "redis":
        redis_url = config.get("REDIS_URL", "")
        try:
            client = redis.from_url(redis_url, decode_responses=True, socket_timeout=2)
            client.ping()
        except (redis.exceptions.RedisError, ValueError) as exc:
            logger.warning("Redis unavailable (%s); falling back to memory analysis cache", exc,
                           extra={"cache_backend": "memory"})
            return MemoryCacheBackend(ttl_seconds=ttl)
        logger.info("Analysis cache: using Redis at %s", redis_url.split("@")[-1],
                    extra={"cache_backend": "redis"})
        return RedisCacheBackend(client, ttl_seconds=ttl)

    if name == "database":
        return DatabaseCacheBackend(ttl_seconds=ttl)

    raise CacheBackendError(f"Unknown analysis cache backend: {name!r}")


# ═════════════════════════════════════════════════════════════════════════════
# Cache service
# ═════════════════════════════════════════════════════════════════════════════

class AnalysisCache:
    """Hit/miss accounting around a backend."""

    def __init__(self, backend=None):
        self.backend = backend or MemoryCacheBackend()
        self._lock = Lock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "invalidations": 0}

    def _count(self, key: str, amount: int = 1):
        with self._lock:
            self._stats[key] += amount

    def get_cached_analysis(self, analysis_hash: str) -> CacheEntry | None:
        """Return the entry with its hit count advanced by one, or None on miss."""
        entry = self.backend.get(analysis_hash)
        if entry is None:
            self._count("misses")
            logger.debug("Analysis cache miss", extra={"analysis_hash": analysis_hash})
            return None
        self._count("hits")
        logger.info("Analysis cache hit (hitCount=%d)", entry.hit_count,
                    extra={"analysis_hash": analysis_hash, "cache_backend": self.backend.name})
        return entry

    def set_cached_analysis(self, analysis_hash: str, entry: CacheEntry):
        """Store ``entry``; last writer wins."""
        self.backend.set(analysis_hash, entry)
        self._count("sets")
        logger.info("Analysis cached", extra={"analysis_hash": analysis_hash,
                                              "cache_backend": self.backend.name})

    def invalidate(self, analysis_hash: str | None = None) -> int:
        """Drop one entry, or everything when ``analysis_hash`` is None."""
        if analysis_hash:
            removed = self.backend.delete(analysis_hash)
        else:
            removed = self.backend.clear()
        self._count("invalidations", removed)
        return removed

    def get_stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        total = stats["hits"] + stats["misses"]
        stats["hit_rate_pct"] = round(stats["hits"] / total * 100, 2) if total else 0.0
        stats["entries"] = self.backend.count()
        stats["backend"] = self.backend.name
        stats["ttl_seconds"] = self.backend.ttl_seconds
        return stats


# ── Module-level helpers ─────────────────────────────────────────────────

_default_cache = None
_default_lock = Lock()


def get_default_cache() -> AnalysisCache:
    """The app's cache inside an app context, otherwise a lazily created memory cache."""
    global _default_cache
    if has_app_context() and "analysis_cache" in current_app.extensions:
        return current_app.extensions["analysis_cache"]
    with _default_lock:
        if _default_cache is None:
            _default_cache = AnalysisCache(MemoryCacheBackend())
        return _default_cache


def get_cached_analysis(analysis_hash: str) -> CacheEntry | None:
    return get_default_cache().get_cached_analysis(analysis_hash)


def set_cached_analysis(analysis_hash: str, entry: CacheEntry):
    get_default_cache().set_cached_analysis(analysis_hash, entry)
