"""Embedding generation with caching, plus catalog backfill."""

from datetime import datetime, timezone

import asyncpg
import structlog
from openai import AsyncOpenAI

from booklib.config import Settings
from booklib.database import embedding_to_pgvector
from booklib.exceptions import ErrorCode, RetrievalError
from booklib.models.book import BackfillReport, BookSource
from booklib.services.redis_service import RedisService

logger = structlog.get_logger(__name__)

# Maximum characters for embedding input (text-embedding-3-small limit)
MAX_EMBEDDING_CHARS = 8192


def book_embedding_text(book: BookSource) -> str:
    """Text a book is embedded from: one labelled line per field."""
    return "\n".join(
        [
            f"Title: {book.title}",
            f"Author: {book.author}",
            f"Category: {book.category or ''}",
            f"Description: {book.description or ''}",
        ]
    )


class EmbeddingService:
    """Service for generating and caching text embeddings."""

    def __init__(
        self,
        settings: Settings,
        client: AsyncOpenAI,
        cache: RedisService,
        pool: asyncpg.Pool,
    ):
        self.settings = settings
        self.client = client
        self.cache = cache
        self.pool = pool

    async def generate_embedding(self, text: str) -> list[float]:
        """Generate embedding for text via the model service.

        Args:
            text: Text to embed (will be truncated if too long)

        Returns:
            Embedding vector of the configured dimension

        Raises:
            RetrievalError: EMBEDDING_SERVICE_ERROR on any transport or model
                failure, or if the vector has the wrong dimension
        """
        if len(text) > MAX_EMBEDDING_CHARS:
            logger.warning(
                "embedding_text_truncated",
                original_length=len(text),
                truncated_to=MAX_EMBEDDING_CHARS,
            )
            text = text[:MAX_EMBEDDING_CHARS]

        try:
            response = await self.client.embeddings.create(
                input=text,
                model=self.settings.embedding_model,
            )
            embedding = list(response.data[0].embedding)
        except Exception as e:
            logger.error(
                "embedding_generation_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RetrievalError(
                "Embedding service is unavailable", ErrorCode.EMBEDDING_SERVICE_ERROR
            ) from e

        if len(embedding) != self.settings.embedding_dimensions:
            logger.error(
                "embedding_dimension_mismatch",
                expected=self.settings.embedding_dimensions,
                actual=len(embedding),
                model=self.settings.embedding_model,
            )
            raise RetrievalError(
                "Embedding service returned an unexpected vector",
                ErrorCode.EMBEDDING_SERVICE_ERROR,
            )

        logger.debug(
            "embedding_generated",
            model=self.settings.embedding_model,
            dimensions=len(embedding),
        )
        return embedding

    async def embed(self, text: str) -> list[float]:
        """Get embedding for text, using cache if available.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            RetrievalError: EMBEDDING_SERVICE_ERROR if the vector cannot be produced
        """
        content_hash = RedisService.compute_content_hash(text)

        cached = await self.cache.get_cached_embedding(content_hash)
        if cached is not None and len(cached) == self.settings.embedding_dimensions:
            logger.debug("embedding_cache_hit", content_hash=content_hash[:16])
            return cached

        embedding = await self.generate_embedding(text)

        if await self.cache.cache_embedding(content_hash, embedding):
            logger.debug("embedding_cached", content_hash=content_hash[:16])

        return embedding

    async def backfill_missing_embeddings(self) -> BackfillReport:
        """Embed every catalog book that has no vector yet.

        A failure on one book is logged and counted; the batch continues.

        Returns:
            BackfillReport with succeeded, failed and total counts
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, title, author, category, description
                FROM books
                WHERE embedding IS NULL
                ORDER BY created_at
                """
            )

        report = BackfillReport(total=len(rows))
        logger.info("embedding_backfill_started", total=report.total)

        for row in rows:
            book = BookSource(
                id=row["id"],
                title=row["title"],
                author=row["author"],
                category=row["category"],
                description=row["description"] or "",
            )
            try:
                embedding = await self.generate_embedding(book_embedding_text(book))
                async with self.pool.acquire() as conn:
                    await conn.execute(
                        """
                        UPDATE books
                        SET embedding = $2::vector, updated_at = $3
                        WHERE id = $1
                        """,
                        book.id,
                        embedding_to_pgvector(embedding),
                        datetime.now(timezone.utc),
                    )
                report.succeeded += 1
            except Exception as e:
                report.failed += 1
                logger.warning(
                    "embedding_backfill_item_failed",
                    book_id=str(book.id),
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info(
            "embedding_backfill_completed",
            succeeded=report.succeeded,
            failed=report.failed,
            total=report.total,
        )
        return report
