"""Vector search endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from booklib.api.dependencies import get_app_settings, get_retrieval_service
from booklib.config import Settings
from booklib.models.chatbot import VectorSearchRequest
from booklib.services.retrieval_service import RetrievalService

router = APIRouter(prefix="/search", tags=["Search"])


@router.post("/vector")
async def vector_search(
    body: VectorSearchRequest,
    retrieval: RetrievalService = Depends(get_retrieval_service),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Semantic search over the catalog; limit is capped at max_top_k."""
    limit = min(body.limit, settings.max_top_k)
    documents = await retrieval.search_text(body.query, limit)
    return {
        "success": True,
        "count": len(documents),
        "query": body.query,
        "data": [d.model_dump(by_alias=True, mode="json") for d in documents],
    }


@router.get("/similar/{book_id}")
async def similar_books(
    book_id: UUID,
    limit: int = Query(default=5, ge=1),
    retrieval: RetrievalService = Depends(get_retrieval_service),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Books similar to a catalog book, never including the book itself."""
    documents = await retrieval.find_similar(book_id, min(limit, settings.max_top_k))
    return {
        "success": True,
        "count": len(documents),
        "data": [d.model_dump(by_alias=True, mode="json") for d in documents],
    }
