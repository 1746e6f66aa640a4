"""Read-through cache for category listings and summaries.

The relational store stays authoritative. Entries here only save work: a
miss or an unreachable backend falls back to recomputing from the store, and
writes invalidate every key derived from the affected user.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import threading
import time
from datetime import date
from typing import Any, Callable, Optional, Protocol

import redis
from redis.exceptions import RedisError

from config import Settings, get_settings
from errors import CacheUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECS = 300

CATEGORIES = "categories"
SUMMARY_MONTHLY = "summary:monthly"
SUMMARY_CATEGORIES = "summary:categories"


def _key_date(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


def cache_key_for(operation: str, user_id: int, *params: Any) -> str:
    if operation == CATEGORIES:
        if params:
            raise ValueError("categories key takes no parameters")
        return f"categories:user:{user_id}"
    if operation == SUMMARY_MONTHLY:
        if len(params) != 2:
            raise ValueError("summary:monthly key takes year and month")
        year, month = params
        return f"summary:monthly:{user_id}:{int(year)}-{int(month)}"
    if operation == SUMMARY_CATEGORIES:
        if len(params) != 2:
            raise ValueError("summary:categories key takes from and to")
        start, end = params
        return f"summary:categories:{user_id}:{_key_date(start)}:{_key_date(end)}"
    raise ValueError(f"Unknown cache operation: {operation}")


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_matching(self, pattern: str) -> int: ...


class InMemoryCacheBackend:
    """Process-local backend with expiry, used in tests and when Redis is off."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._entries[key] = (value, now + ttl_seconds)

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        expired = [
            k for k, (_, expires_at) in self._entries.items() if expires_at <= now
        ]
        for key in expired:
            del self._entries[key]

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_matching(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)


class RedisCacheBackend:
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, timeout: float = 0.5) -> "RedisCacheBackend":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except RedisError as exc:
            raise CacheUnavailable(f"redis get failed: {exc}") from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheUnavailable(f"redis set failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as exc:
            raise CacheUnavailable(f"redis delete failed: {exc}") from exc

    def delete_matching(self, pattern: str) -> int:
        try:
            keys = list(self.client.scan_iter(match=pattern, count=500))
            if not keys:
                return 0
            return int(self.client.delete(*keys) or 0)
        except RedisError as exc:
            raise CacheUnavailable(f"redis scan/delete failed: {exc}") from exc


class CacheCoordinator:
    def __init__(
        self, backend: CacheBackend, default_ttl: int = DEFAULT_TTL_SECS
    ) -> None:
        self.backend = backend
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.backend.get(key)
        except CacheUnavailable as exc:
            logger.warning(f"cache_get_failed: key={key} error={exc}")
            return None
        if raw is None:
            logger.debug(f"cache_miss: key={key}")
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"cache_decode_failed: key={key}")
            self.invalidate(key)
            return None
        logger.debug(f"cache_hit: key={key}")
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        payload = json.dumps(value)
        try:
            self.backend.set(key, payload, ttl)
        except CacheUnavailable as exc:
            logger.warning(f"cache_set_failed: key={key} error={exc}")

    def invalidate(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except CacheUnavailable as exc:
            logger.warning(f"cache_invalidate_failed: key={key} error={exc}")
            return
        logger.debug(f"cache_invalidate: key={key}")

    def invalidate_pattern(self, pattern: str) -> int:
        try:
            removed = self.backend.delete_matching(pattern)
        except CacheUnavailable as exc:
            logger.warning(f"cache_invalidate_failed: pattern={pattern} error={exc}")
            return 0
        logger.debug(f"cache_invalidate: pattern={pattern} removed={removed}")
        return removed

    def invalidate_user_summaries(self, user_id: int) -> int:
        removed = self.invalidate_pattern(f"{SUMMARY_MONTHLY}:{user_id}:*")
        removed += self.invalidate_pattern(f"{SUMMARY_CATEGORIES}:{user_id}:*")
        return removed

    def invalidate_all_category_lists(self) -> int:
        return self.invalidate_pattern("categories:user:*")

    def read_through(
        self, key: str, producer: Callable[[], Any], ttl_seconds: Optional[int] = None
    ) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = producer()
        self.set(key, value, ttl_seconds)
        return value


def create_cache(settings: Optional[Settings] = None) -> CacheCoordinator:
    settings = settings or get_settings()
    if settings.redis_url:
        backend: CacheBackend = RedisCacheBackend.from_url(
            settings.redis_url, timeout=settings.cache_timeout_secs
        )
        logger.info("cache_backend: redis")
    else:
        backend = InMemoryCacheBackend()
        logger.info("cache_backend: in-memory")
    return CacheCoordinator(backend, default_ttl=settings.cache_ttl_secs)
