"""
Cache Module
============

Redis-based caching with fallback to an in-memory dict.

Usage:
    from companion.cache import RedisCache

    cache = RedisCache(redis_url=settings.redis.url)
    cache.set("key", {"data": "value"}, ttl_hours=24)
"""

from .redis_cache import RedisCache

__all__ = ["RedisCache"]
