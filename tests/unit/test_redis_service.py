"""Unit tests for Redis service."""

import json
from unittest.mock import AsyncMock

import pytest

from booklib.services.redis_service import RedisService


@pytest.fixture
def mock_redis_client():
    """Create mock Redis client."""
    return AsyncMock()


class TestEmbeddingCache:
    async def test_cache_hit(self, settings, mock_redis_client):
        mock_redis_client.get.return_value = json.dumps([0.1, 0.2])
        service = RedisService(mock_redis_client, settings)

        result = await service.get_cached_embedding("hash")

        assert result == [0.1, 0.2]
        key = mock_redis_client.get.call_args.args[0]
        assert key == f"embedding_cache:{settings.embedding_model}:hash"

    async def test_cache_miss(self, settings, mock_redis_client):
        mock_redis_client.get.return_value = None
        service = RedisService(mock_redis_client, settings)

        assert await service.get_cached_embedding("hash") is None

    async def test_store_uses_ttl(self, settings, mock_redis_client):
        service = RedisService(mock_redis_client, settings)

        assert await service.cache_embedding("hash", [0.5]) is True

        key, ttl, payload = mock_redis_client.setex.call_args.args
        assert ttl == settings.embedding_cache_ttl
        assert json.loads(payload) == [0.5]

    async def test_redis_errors_degrade_to_miss(self, settings, mock_redis_client):
        mock_redis_client.get.side_effect = ConnectionError("down")
        mock_redis_client.setex.side_effect = ConnectionError("down")
        service = RedisService(mock_redis_client, settings)

        assert await service.get_cached_embedding("hash") is None
        assert await service.cache_embedding("hash", [0.5]) is False

    async def test_no_client(self, settings):
        service = RedisService(None, settings)

        assert service.available is False
        assert await service.get_cached_embedding("hash") is None
        assert await service.cache_embedding("hash", [0.5]) is False
        assert await service.ping() is False


def test_content_hash_is_sha256():
    assert RedisService.compute_content_hash("abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
