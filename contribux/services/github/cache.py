"""
Cache storage for GitHub API responses.

Storage adapters share one async interface (`CacheStorage`) so the client
does not care whether entries live in process memory or in Redis:

- MemoryCache: cachetools TLRUCache with a per-entry TTL and LRU eviction
  once `max_size` entries are held. The default for every client.
- RedisCache: JSON values in a redis.asyncio client, TTL via SET EX.

Entries may carry the response ETag so the client can revalidate a stale
entry with a conditional request instead of downloading it again.

Patterns used by `keys()` and `invalidate_pattern()` are globs where `*`
matches any substring and every other character matches literally, so
keys containing `.`, `+`, `[` or `]` are safe to target.
"""

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol, runtime_checkable

from cachetools import TLRUCache  # type: ignore[import-untyped]
from redis.exceptions import RedisError

from contribux.services.github.constants import DEFAULT_CACHE_MAX_AGE, DEFAULT_CACHE_MAX_SIZE

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a `*` glob into a full-match regex, escaping everything else."""
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")), re.DOTALL)


def match_pattern(pattern: str, key: str) -> bool:
    return compile_pattern(pattern).fullmatch(key) is not None


@dataclass
class CacheEntry:
    """
    A cached value with its time-to-live.

    `ttl` bounds how long storage keeps the entry. An entry stored with an
    `etag` may outlive its `max_age`: once stale it is only served after the
    server confirms it with a 304 to a conditional request.
    """

    key: str
    value: Any
    ttl: float  # seconds
    inserted_at: float
    etag: str | None = None
    max_age: float | None = None  # seconds the entry is fresh; defaults to ttl

    @property
    def expires_at(self) -> float:
        return self.inserted_at + self.ttl

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    @property
    def fresh_until(self) -> float:
        return self.inserted_at + (self.ttl if self.max_age is None else self.max_age)

    def is_fresh(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current < self.fresh_until


@dataclass
class CacheMetrics:
    """Counters reported by a storage adapter."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_ratio": self.hit_ratio,
            **self.extra,
        }


@runtime_checkable
class CacheStorage(Protocol):
    """Key-value store used by the client. `get` returns None on a miss."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        *,
        etag: str | None = None,
        max_age: float | None = None,
    ) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self, pattern: str | None = None) -> list[str]: ...

    async def invalidate_pattern(self, pattern: str) -> int: ...

    async def clear(self) -> None: ...

    def stats(self) -> CacheMetrics: ...


class _EntryCache(TLRUCache):
    """TLRUCache that reports LRU evictions (expiry is not an eviction)."""

    def __init__(
        self,
        maxsize: int,
        timer: Callable[[], float],
        on_evict: Callable[[str], None],
    ) -> None:
        super().__init__(maxsize=maxsize, ttu=self._time_to_use, timer=timer)
        self._on_evict = on_evict

    @staticmethod
    def _time_to_use(_key: str, entry: CacheEntry, now: float) -> float:
        return now + entry.ttl

    def popitem(self) -> tuple[str, CacheEntry]:
        key, entry = super().popitem()
        self._on_evict(key)
        return key, entry


class MemoryCache:
    """
    In-process cache with per-entry TTL and LRU bounding.

    Expired entries are never returned: the underlying TLRUCache drops them
    lazily on access and on every write. Each client gets its own instance
    unless one is injected, so separate clients never share state.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        default_ttl: float = DEFAULT_CACHE_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._metrics = CacheMetrics(max_size=max_size)
        self._store = _EntryCache(max_size, clock, self._record_eviction)

    def _record_eviction(self, key: str) -> None:
        self._metrics.evictions += 1
        logger.debug(f"Cache EVICT: {key}")

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._store.get(key)
        if entry is None or entry.is_expired(self._clock()):
            self._store.pop(key, None)
            self._metrics.misses += 1
            return None
        self._metrics.hits += 1
        return entry

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        *,
        etag: str | None = None,
        max_age: float | None = None,
    ) -> bool:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return False
        self._store[key] = CacheEntry(
            key=key,
            value=value,
            ttl=ttl,
            inserted_at=self._clock(),
            etag=etag,
            max_age=max_age,
        )
        self._metrics.writes += 1
        return True

    async def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    async def keys(self, pattern: str | None = None) -> list[str]:
        self.purge_expired()
        keys = list(self._store.keys())
        if pattern is None:
            return keys
        return [key for key in keys if match_pattern(pattern, key)]

    async def invalidate_pattern(self, pattern: str) -> int:
        removed = 0
        for key in await self.keys(pattern):
            if self._store.pop(key, None) is not None:
                removed += 1
        logger.debug(f"Invalidated {removed} cache entries matching {pattern!r}")
        return removed

    async def clear(self) -> None:
        self._store.clear()

    def purge_expired(self) -> None:
        """Actively drop expired entries."""
        self._store.expire()

    def stats(self) -> CacheMetrics:
        self._metrics.size = len(self._store)
        return CacheMetrics(**{**self._metrics.__dict__, "extra": dict(self._metrics.extra)})

    def __len__(self) -> int:
        return len(self._store)


def _redis_glob(pattern: str) -> str:
    """Escape Redis glob metacharacters other than `*`."""
    return re.sub(r"([?\[\]\\])", r"\\\1", pattern)


class RedisCache:
    """
    Cache adapter over a `redis.asyncio.Redis`-compatible client.

    Values are stored as JSON, so only JSON-serializable payloads are
    accepted. Redis failures are logged and degrade to a miss (reads) or a
    False result (writes) instead of failing the API call.
    """

    def __init__(
        self,
        redis: Any,
        default_ttl: float = DEFAULT_CACHE_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self.default_ttl = default_ttl
        self._clock = clock
        self._metrics = CacheMetrics()

    async def get(self, key: str) -> CacheEntry | None:
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            self._metrics.misses += 1
            return None
        if raw is None:
            self._metrics.misses += 1
            return None
        try:
            payload = json.loads(raw)
            entry = CacheEntry(
                key=key,
                value=payload["value"],
                ttl=payload["ttl"],
                inserted_at=payload["inserted_at"],
                etag=payload.get("etag"),
                max_age=payload.get("max_age"),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            await self.delete(key)
            self._metrics.misses += 1
            return None
        if entry.is_expired(self._clock()):
            self._metrics.misses += 1
            return None
        self._metrics.hits += 1
        return entry

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        *,
        etag: str | None = None,
        max_age: float | None = None,
    ) -> bool:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return False
        payload = json.dumps(
            {
                "value": value,
                "ttl": ttl,
                "inserted_at": self._clock(),
                "etag": etag,
                "max_age": max_age,
            }
        )
        try:
            await self.redis.set(key, payload, ex=max(1, int(ttl)))
        except RedisError as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            return False
        self._metrics.writes += 1
        return True

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.redis.delete(key))
        except RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            return False

    async def keys(self, pattern: str | None = None) -> list[str]:
        match = _redis_glob(pattern) if pattern is not None else "*"
        found: list[str] = []
        try:
            async for raw_key in self.redis.scan_iter(match=match):
                key = raw_key.decode() if isinstance(raw_key, bytes) else raw_key
                if pattern is None or match_pattern(pattern, key):
                    found.append(key)
        except RedisError as e:
            logger.warning(f"Redis scan failed for {match!r}: {e}")
        return found

    async def invalidate_pattern(self, pattern: str) -> int:
        keys = await self.keys(pattern)
        if not keys:
            return 0
        try:
            return int(await self.redis.delete(*keys))
        except RedisError as e:
            logger.warning(f"Redis invalidation failed for {pattern!r}: {e}")
            return 0

    async def clear(self) -> None:
        await self.invalidate_pattern("*")

    def stats(self) -> CacheMetrics:
        return CacheMetrics(
            hits=self._metrics.hits,
            misses=self._metrics.misses,
            writes=self._metrics.writes,
        )
