"""
Tests for the embedding cache.

Usage:
    pytest tests/test_cache.py -v
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import redis

from companion.cache import RedisCache


class TestMemoryBackend:
    """In-memory backend (no Redis URL)."""

    def setup_method(self):
        self.cache = RedisCache(use_memory=True, prefix="test")

    def test_set_get(self):
        assert self.cache.set("emb:key", [0.1, 0.2])
        assert self.cache.get("emb:key") == [0.1, 0.2]
        assert self.cache.get("emb:other") is None

    def test_expired_entry(self):
        self.cache._memory_cache["test:old"] = (datetime.now(timezone.utc) - timedelta(seconds=1), [1.0])
        assert self.cache.get("old") is None

    def test_oldest_entry_evicted_at_capacity(self):
        cache = RedisCache(use_memory=True, prefix="test", max_memory_entries=3)
        for i in range(5):
            cache.set(f"k{i}", i)

        assert len(cache._memory_cache) == 3
        assert cache.get("k0") is None
        assert cache.get("k1") is None
        assert [cache.get(f"k{i}") for i in range(2, 5)] == [2, 3, 4]

    def test_expired_entries_swept_before_eviction(self):
        cache = RedisCache(use_memory=True, prefix="test", max_memory_entries=2)
        cache.set("keep", 1)
        cache._memory_cache["test:stale"] = (datetime.now(timezone.utc) - timedelta(seconds=1), 2)

        cache.set("new", 3)

        assert cache.get("keep") == 1
        assert cache.get("new") == 3
        assert "test:stale" not in cache._memory_cache

    def test_overwrite_does_not_evict(self):
        cache = RedisCache(use_memory=True, prefix="test", max_memory_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RedisCache(use_memory=True, max_memory_entries=0)

    def test_no_url_means_memory(self):
        assert RedisCache().backend == "memory"


class TestRedisBackend:
    """Redis backend with a mocked client."""

    def test_unreachable_redis_falls_back(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        with patch("companion.cache.redis_cache.redis.from_url", return_value=client):
            cache = RedisCache(redis_url="redis://localhost:6379/0")
        assert cache.backend == "memory"
        cache.set("k", [1.0])
        assert cache.get("k") == [1.0]

    def test_set_with_ttl_and_get(self):
        client = MagicMock()
        with patch("companion.cache.redis_cache.redis.from_url", return_value=client):
            cache = RedisCache(redis_url="redis://localhost:6379/0", prefix="kc")

        cache.set("emb:x", [0.5], ttl_hours=2)
        client.setex.assert_called_once_with("kc:emb:x", 7200, json.dumps([0.5]))

        client.get.return_value = json.dumps([0.5])
        assert cache.get("emb:x") == [0.5]
        client.get.assert_called_with("kc:emb:x")

    def test_redis_error_on_get_uses_memory(self):
        client = MagicMock()
        client.get.side_effect = redis.TimeoutError("slow")
        with patch("companion.cache.redis_cache.redis.from_url", return_value=client):
            cache = RedisCache(redis_url="redis://localhost:6379/0")
        assert cache.get("missing") is None
