"""
Redis cache with graceful degradation.

Provides:
- RedisClient: singleton wrapper around redis-py configured from REDIS_URL
- InMemoryCache: thread-safe TTL cache with the same interface, used when
  Redis is not configured or unreachable
- get_cache(): returns whichever backend is usable

Cache failures are never fatal: every operation logs a warning and returns
an empty result, and callers fall back to the database.
"""

import fnmatch
import logging
import os
import time
from threading import Lock
from typing import Dict, Optional, Set

import redis

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Redis client wrapper with connection pooling and fallback.

    Provides graceful degradation when Redis is unavailable.
    """

    _instance: Optional["RedisClient"] = None
    _lock = Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._redis = None
        self._available = False
        self._connect()
        self._initialized = True

    def _connect(self) -> None:
        """Connect to Redis if configured."""
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            logger.info("REDIS_URL not configured - session token caching disabled")
            return

        try:
            self._redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            self._redis.ping()
            self._available = True
            logger.info("Redis connection established")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e} - caching disabled")

    @property
    def available(self) -> bool:
        return self._available and self._redis is not None

    @property
    def backend(self) -> str:
        return "redis"

    def ping(self) -> bool:
        if not self.available:
            return False
        try:
            return bool(self._redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis PING failed: {e}")
            return False

    def get(self, key: str) -> Optional[str]:
        if not self.available:
            return None
        try:
            return self._redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"Redis GET failed: {e}")
            return None

    def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        if not self.available:
            return False
        try:
            self._redis.setex(key, ttl_seconds, value)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis SET failed: {e}")
            return False

    def delete(self, *keys: str) -> int:
        if not self.available or not keys:
            return 0
        try:
            return self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE failed: {e}")
            return 0

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern."""
        if not self.available:
            return 0
        try:
            keys = list(self._redis.scan_iter(pattern))
            if keys:
                return self._redis.delete(*keys)
            return 0
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE pattern failed: {e}")
            return 0

    def sadd(self, key: str, member: str, ttl_seconds: Optional[int] = None) -> bool:
        if not self.available:
            return False
        try:
            self._redis.sadd(key, member)
            if ttl_seconds:
                self._redis.expire(key, ttl_seconds)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis SADD failed: {e}")
            return False

    def srem(self, key: str, member: str) -> bool:
        if not self.available:
            return False
        try:
            self._redis.srem(key, member)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis SREM failed: {e}")
            return False

    def smembers(self, key: str) -> Set[str]:
        if not self.available:
            return set()
        try:
            return set(self._redis.smembers(key))
        except redis.RedisError as e:
            logger.warning(f"Redis SMEMBERS failed: {e}")
            return set()


class InMemoryCache:
    """
    In-memory fallback cache when Redis is unavailable.

    Thread-safe with per-key TTL. Values and sets live in separate maps,
    as they would in Redis.
    """

    def __init__(self, max_size: int = 10000):
        self._values: Dict[str, tuple[str, Optional[float]]] = {}
        self._sets: Dict[str, tuple[Set[str], Optional[float]]] = {}
        self._lock = Lock()
        self._max_size = max_size

    @property
    def available(self) -> bool:
        return True

    @property
    def backend(self) -> str:
        return "memory"

    def ping(self) -> bool:
        return True

    @staticmethod
    def _expired(expires_at: Optional[float]) -> bool:
        return expires_at is not None and time.monotonic() >= expires_at

    @staticmethod
    def _expiry(ttl_seconds: Optional[int]) -> Optional[float]:
        return time.monotonic() + ttl_seconds if ttl_seconds else None

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at):
                del self._values[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if len(self._values) >= self._max_size and key not in self._values:
                # Evict oldest insertion
                self._values.pop(next(iter(self._values)))
            self._values[key] = (value, self._expiry(ttl_seconds))
            return True

    def delete(self, *keys: str) -> int:
        deleted = 0
        with self._lock:
            for key in keys:
                if self._values.pop(key, None) is not None:
                    deleted += 1
                if self._sets.pop(key, None) is not None:
                    deleted += 1
        return deleted

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matching = [k for k in list(self._values) + list(self._sets) if fnmatch.fnmatchcase(k, pattern)]
        return self.delete(*matching)

    def sadd(self, key: str, member: str, ttl_seconds: Optional[int] = None) -> bool:
        with self._lock:
            members, expires_at = self._sets.get(key, (set(), None))
            if self._expired(expires_at):
                members = set()
            members.add(member)
            self._sets[key] = (members, self._expiry(ttl_seconds) if ttl_seconds else expires_at)
            return True

    def srem(self, key: str, member: str) -> bool:
        with self._lock:
            entry = self._sets.get(key)
            if entry is not None:
                entry[0].discard(member)
            return True

    def smembers(self, key: str) -> Set[str]:
        with self._lock:
            entry = self._sets.get(key)
            if entry is None:
                return set()
            members, expires_at = entry
            if self._expired(expires_at):
                del self._sets[key]
                return set()
            return set(members)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._sets.clear()


_memory_cache = InMemoryCache()


def get_cache():
    """
    Get the active cache backend.

    Returns the Redis client when it is connected, otherwise the
    process-local in-memory cache.
    """
    client = RedisClient()
    if client.available:
        return client
    return _memory_cache
