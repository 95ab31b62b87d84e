"""Redis connection handling and the query embedding cache."""

import hashlib
import json
from typing import Optional

import redis.asyncio as redis
import structlog

from booklib.config import Settings

logger = structlog.get_logger(__name__)


async def connect_redis(settings: Settings) -> Optional[redis.Redis]:
    """Create the Redis client.

    Returns:
        Redis client or None if connection fails (graceful degradation)
    """
    client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.warning("redis_connection_failed", error=str(e))
        await client.aclose()
        return None

    logger.info("redis_connected", url=settings.redis_url.split("@")[-1])
    return client


async def close_redis(client: Optional[redis.Redis]) -> None:
    """Close the Redis connection."""
    if client is not None:
        await client.aclose()
        logger.info("redis_connection_closed")


class RedisService:
    """Embedding cache on top of an optional Redis client.

    Every operation degrades to a miss when Redis is absent or failing.
    """

    def __init__(self, client: Optional[redis.Redis], settings: Settings):
        self.client = client
        self.settings = settings

    @property
    def available(self) -> bool:
        return self.client is not None

    def _embedding_key(self, content_hash: str) -> str:
        # Model in the key so switching models never serves stale vectors
        return f"embedding_cache:{self.settings.embedding_model}:{content_hash}"

    async def get_cached_embedding(self, content_hash: str) -> Optional[list[float]]:
        """Retrieve cached embedding by content hash.

        Args:
            content_hash: SHA256 hash of the content

        Returns:
            Embedding vector or None if not cached
        """
        if self.client is None:
            return None

        try:
            data = await self.client.get(self._embedding_key(content_hash))
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            logger.warning("redis_get_embedding_failed", error=str(e))
            return None

    async def cache_embedding(
        self, content_hash: str, embedding: list[float]
    ) -> bool:
        """Cache an embedding with TTL.

        Args:
            content_hash: SHA256 hash of the content
            embedding: Embedding vector to cache

        Returns:
            True if successful, False otherwise
        """
        if self.client is None:
            return False

        try:
            await self.client.setex(
                self._embedding_key(content_hash),
                self.settings.embedding_cache_ttl,
                json.dumps(embedding),
            )
            return True
        except Exception as e:
            logger.warning("redis_cache_embedding_failed", error=str(e))
            return False

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    @staticmethod
    def compute_content_hash(content: str) -> str:
        """Compute SHA256 hash of content for caching.

        Args:
            content: Text content to hash

        Returns:
            Hex-encoded SHA256 hash
        """
        return hashlib.sha256(content.encode()).hexdigest()
