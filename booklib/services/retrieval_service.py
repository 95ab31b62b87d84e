"""Vector retrieval over the book catalog."""

from typing import Optional
from uuid import UUID

import asyncpg
import structlog

from booklib.config import Settings
from booklib.database import embedding_to_pgvector, pgvector_to_embedding
from booklib.exceptions import ErrorCode, RetrievalError
from booklib.models.book import RetrievedDocument
from booklib.services.embedding_service import EmbeddingService

logger = structlog.get_logger(__name__)

# pgvector rejects hnsw.ef_search above this value
MAX_EF_SEARCH = 1000


def cosine_to_score(similarity: float) -> float:
    """Map cosine similarity in [-1, 1] onto a relevance score in [0, 1]."""
    score = (1.0 + similarity) / 2.0
    return min(1.0, max(0.0, score))


class RetrievalService:
    """Nearest-neighbour search on book embeddings (pgvector, cosine distance)."""

    def __init__(
        self,
        settings: Settings,
        pool: asyncpg.Pool,
        embeddings: EmbeddingService,
    ):
        self.settings = settings
        self.pool = pool
        self.embeddings = embeddings

    def candidate_count(self, k: int) -> int:
        return min(MAX_EF_SEARCH, max(k, k * self.settings.vector_candidate_multiplier))

    async def search(
        self, query_vector: list[float], k: int
    ) -> list[RetrievedDocument]:
        """Find the k books closest to a query vector.

        Books without an embedding never match. The index is asked to
        consider k x vector_candidate_multiplier candidates.

        Args:
            query_vector: Embedding of the query
            k: Maximum number of results

        Returns:
            Documents ordered by descending score, at most k of them
        """
        if k <= 0:
            return []

        candidates = self.candidate_count(k)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                # Scoped to this transaction only
                await conn.execute(
                    "SELECT set_config('hnsw.ef_search', $1, true)",
                    str(candidates),
                )
                rows = await conn.fetch(
                    """
                    SELECT
                        id, title, author, category, description,
                        publish_year, cover_image,
                        1 - (embedding <=> $1::vector) AS similarity
                    FROM books
                    WHERE embedding IS NOT NULL
                    ORDER BY embedding <=> $1::vector
                    LIMIT $2
                    """,
                    embedding_to_pgvector(query_vector),
                    k,
                )

        documents = [
            RetrievedDocument(
                id=row["id"],
                title=row["title"],
                author=row["author"],
                category=row["category"],
                description=row["description"] or "",
                publish_year=row["publish_year"],
                cover_image=row["cover_image"],
                score=cosine_to_score(float(row["similarity"])),
            )
            for row in rows
        ]
        # Approximate index order is not guaranteed to be exact
        documents.sort(key=lambda d: d.score, reverse=True)
        documents = documents[:k]

        logger.info(
            "vector_search_completed",
            k=k,
            candidates=candidates,
            result_count=len(documents),
            top_score=documents[0].score if documents else None,
        )
        return documents

    async def search_text(self, query: str, k: int) -> list[RetrievedDocument]:
        """Embed a free-text query and search with it.

        Raises:
            RetrievalError: EMBEDDING_SERVICE_ERROR if the query cannot be embedded
        """
        query_vector = await self.embeddings.embed(query)
        return await self.search(query_vector, k)

    async def get_book_vector(self, book_id: UUID) -> Optional[list[float]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT embedding::text AS embedding
                FROM books
                WHERE id = $1
                """,
                book_id,
            )

        if row is None:
            return None
        return pgvector_to_embedding(row["embedding"])

    async def find_similar(self, book_id: UUID, k: int) -> list[RetrievedDocument]:
        """Books most similar to a catalog book, excluding the book itself.

        Raises:
            RetrievalError: NOT_FOUND if the book does not exist or has no
                embedding
        """
        vector = await self.get_book_vector(book_id)
        if not vector:
            raise RetrievalError(
                "Book not found or not yet embedded", ErrorCode.NOT_FOUND
            )

        documents = await self.search(vector, k + 1)
        return [d for d in documents if d.id != book_id][:k]
