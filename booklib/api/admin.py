"""Admin-only maintenance endpoints."""

import structlog
from fastapi import APIRouter, Depends

from booklib.api.dependencies import get_auth_service, get_embedding_service, require_admin
from booklib.models.user import User
from booklib.services.auth_service import AuthService
from booklib.services.embedding_service import EmbeddingService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/books/embeddings")
async def backfill_embeddings(
    admin: User = Depends(require_admin),
    embeddings: EmbeddingService = Depends(get_embedding_service),
) -> dict:
    """Embed every book that does not have a vector yet."""
    logger.info("admin_embedding_backfill_requested", admin_id=str(admin.id))
    report = await embeddings.backfill_missing_embeddings()
    return {"success": True, "data": report.model_dump(by_alias=True)}


@router.post("/tokens/sweep")
async def sweep_tokens(
    admin: User = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service),
) -> dict:
    """Delete expired refresh tokens now instead of waiting for the next sweep."""
    deleted = await auth_service.sweep_expired_tokens()
    logger.info("admin_token_sweep", admin_id=str(admin.id), deleted=deleted)
    return {"success": True, "data": {"deleted": deleted}}
