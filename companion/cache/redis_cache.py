"""
Redis Cache
===========

Persistent caching via Redis with automatic fallback to an in-memory dict.
Used to avoid re-embedding identical texts (queries repeat a lot in chat).

Features:
- TTL-based expiration
- JSON serialization
- Fallback to in-memory if Redis is unavailable (bounded, oldest entries evicted)
- Namespace prefixing for key isolation

Usage:
    cache = RedisCache(redis_url="redis://localhost:6379/0")
    cache.set("emb:text-embedding-3-large:3072:<sha256>", vector, ttl_hours=168)
    vector = cache.get("emb:text-embedding-3-large:3072:<sha256>")
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple

import redis

logger = logging.getLogger(__name__)


class RedisCache:
    """
    Redis-based cache with in-memory fallback.

    Automatically falls back to in-memory caching if Redis is unavailable.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "companion",
        use_memory: bool = False,
        max_memory_entries: int = 10000,
    ):
        """
        Initialize cache.

        Args:
            redis_url: Redis URL. If None, the in-memory backend is used.
            prefix: Key prefix for namespace isolation.
            use_memory: Force the in-memory backend.
            max_memory_entries: Cap on in-memory entries; the oldest are evicted.
        """
        self.prefix = prefix
        self._redis: Optional[redis.Redis] = None
        self._memory_cache: Dict[str, Tuple[Optional[datetime], Any]] = {}
        self._use_memory = use_memory or not redis_url
        if max_memory_entries <= 0:
            raise ValueError("max_memory_entries must be positive")
        self.max_memory_entries = max_memory_entries

        if not self._use_memory:
            self._connect(redis_url)

    def _connect(self, redis_url: str) -> None:
        """Establish Redis connection."""
        try:
            self._redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            self._redis.ping()
            logger.info(f"Redis cache connected: {redis_url.split('@')[-1]}")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Using in-memory cache.")
            self._redis = None
            self._use_memory = True

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    @property
    def backend(self) -> str:
        return "memory" if self._use_memory else "redis"

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found/expired
        """
        full_key = self._make_key(key)

        if self._use_memory or self._redis is None:
            return self._memory_get(full_key)

        try:
            value = self._redis.get(full_key)
            if value is None:
                return None
            return json.loads(value)
        except redis.RedisError as e:
            logger.warning(f"Redis get failed: {e}")
            return self._memory_get(full_key)

    def set(
        self,
        key: str,
        value: Any,
        ttl_hours: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache (must be JSON serializable)
            ttl_hours: Time to live in hours
            ttl_seconds: Time to live in seconds (overrides ttl_hours)

        Returns:
            True if successful
        """
        full_key = self._make_key(key)

        ttl = None
        if ttl_seconds is not None:
            ttl = ttl_seconds
        elif ttl_hours is not None:
            ttl = ttl_hours * 3600

        if self._use_memory or self._redis is None:
            return self._memory_set(full_key, value, ttl)

        try:
            serialized = json.dumps(value)
            if ttl:
                self._redis.setex(full_key, ttl, serialized)
            else:
                self._redis.set(full_key, serialized)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis set failed: {e}")
            return self._memory_set(full_key, value, ttl)

    # =========================================================================
    # MEMORY FALLBACK
    # =========================================================================

    def _memory_get(self, key: str) -> Optional[Any]:
        if key not in self._memory_cache:
            return None

        expires_at, value = self._memory_cache[key]
        if expires_at and datetime.now(timezone.utc) > expires_at:
            del self._memory_cache[key]
            return None

        return value

    def _memory_set(self, key: str, value: Any, ttl_seconds: Optional[int]) -> bool:
        expires_at = None
        if ttl_seconds:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)

        if key not in self._memory_cache and len(self._memory_cache) >= self.max_memory_entries:
            self._memory_evict()

        self._memory_cache.pop(key, None)
        self._memory_cache[key] = (expires_at, value)
        return True

    def _memory_evict(self) -> None:
        """Drop expired entries, then the oldest inserted ones until there is room."""
        now = datetime.now(timezone.utc)
        expired = [k for k, (expires_at, _) in self._memory_cache.items() if expires_at and now > expires_at]
        for key in expired:
            del self._memory_cache[key]

        while len(self._memory_cache) >= self.max_memory_entries:
            del self._memory_cache[next(iter(self._memory_cache))]

    def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            self._redis.close()
            self._redis = None
