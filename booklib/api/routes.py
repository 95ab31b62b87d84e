"""Health endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from booklib.database import health_check as db_health_check

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint.

    Returns:
        Status and timestamp in ISO8601 format, plus database and Redis state
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    services = getattr(request.app.state, "services", None)
    if services is None:
        health_status["database"] = "unavailable"
        health_status["redis"] = "unavailable"
        return health_status

    db_healthy = await db_health_check(services.pool)
    health_status["database"] = "healthy" if db_healthy else "unhealthy"
    if not db_healthy:
        health_status["status"] = "degraded"

    health_status["redis"] = "healthy" if await services.cache.ping() else "unavailable"
    return health_status
