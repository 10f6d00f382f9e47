"""
Unit tests for key-value stores.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import ClientConfig
from shared.storage import KeyValueStore, MemoryStore, RedisStore, create_store


class TestMemoryStore:
    """Test cases for MemoryStore."""

    @pytest.fixture
    def store(self):
        return MemoryStore({"user_profile_alice": "{}"})

    @pytest.mark.asyncio
    async def test_get_set_remove(self, store):
        """Test basic store operations."""
        await store.set("user_reviews_alice", "[]")

        assert await store.get("user_reviews_alice") == "[]"
        await store.remove("user_reviews_alice")
        assert await store.get("user_reviews_alice") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key_is_noop(self, store):
        """Test removing a key that does not exist."""
        await store.remove("missing")
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_keys_by_prefix_and_clear(self, store):
        """Test prefix listing and clearing."""
        await store.set("user_lists_alice", "[]")

        assert await store.keys("user_profile_") == ["user_profile_alice"]
        await store.clear()
        assert len(store) == 0

    def test_satisfies_protocol(self, store):
        """Test MemoryStore implements the store protocol."""
        assert isinstance(store, KeyValueStore)


class TestRedisStore:
    """Test cases for RedisStore."""

    @pytest.fixture
    def mock_redis(self):
        client = MagicMock()
        client.get = AsyncMock(return_value='{"data": 1}')
        client.set = AsyncMock()
        client.delete = AsyncMock()
        client.aclose = AsyncMock()
        return client

    @pytest.fixture
    def store(self, mock_redis):
        with patch("shared.storage.redis.from_url", return_value=mock_redis):
            yield RedisStore("redis://localhost:6379/0", namespace="test:")

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, store, mock_redis):
        """Test that reads and writes use the namespace prefix."""
        await store.set("user_profile_alice", "{}")
        value = await store.get("user_profile_alice")

        assert value == '{"data": 1}'
        mock_redis.set.assert_awaited_once_with("test:user_profile_alice", "{}")
        mock_redis.get.assert_awaited_once_with("test:user_profile_alice")

    @pytest.mark.asyncio
    async def test_remove_deletes_namespaced_key(self, store, mock_redis):
        """Test that remove deletes the namespaced key."""
        await store.remove("user_lists_alice")

        mock_redis.delete.assert_awaited_once_with("test:user_lists_alice")

    @pytest.mark.asyncio
    async def test_close_releases_connection(self, store, mock_redis):
        """Test that close releases the client."""
        await store.get("anything")
        await store.close()

        mock_redis.aclose.assert_awaited_once()


class TestCreateStore:
    """Test cases for store selection."""

    def test_memory_backend_by_default(self):
        assert isinstance(create_store(ClientConfig()), MemoryStore)

    def test_redis_backend_selected(self):
        store = create_store(ClientConfig(cache_backend="redis", cache_namespace="app:"))

        assert isinstance(store, RedisStore)
        assert store.namespace == "app:"
