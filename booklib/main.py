"""FastAPI application initialization."""

import asyncio
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from booklib.api.admin import router as admin_router
from booklib.api.auth import router as auth_router
from booklib.api.chatbot import router as chatbot_router
from booklib.api.errors import register_error_handlers
from booklib.api.middleware import CORRELATION_HEADER, CorrelationIdMiddleware
from booklib.api.routes import router
from booklib.api.search import router as search_router
from booklib.config import get_settings
from booklib.database import close_database, init_database, run_migrations
from booklib.services.auth_service import AuthService
from booklib.services.container import build_openai_client, build_services
from booklib.services.logging_service import configure_logging
from booklib.services.redis_service import close_redis, connect_redis

logger = structlog.get_logger(__name__)


async def sweep_tokens_periodically(auth_service: AuthService, interval_seconds: int) -> None:
    """Delete expired refresh tokens every interval until cancelled."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await auth_service.sweep_expired_tokens()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning("token_sweep_cycle_error", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    app.state.settings = settings

    pool = await init_database(settings)
    await run_migrations(pool)
    logger.info("database_initialized")

    redis_client = await connect_redis(settings)
    if redis_client is None:
        logger.warning(
            "redis_initialization_failed",
            note="Continuing without Redis - embedding cache will be unavailable",
        )

    openai_client = build_openai_client(settings)
    services = build_services(settings, pool, redis_client, openai_client)
    app.state.services = services

    sweep_task = asyncio.create_task(
        sweep_tokens_periodically(services.auth, settings.token_sweep_interval_seconds)
    )
    logger.info(
        "application_started",
        chat_model=settings.chat_model,
        embedding_model=settings.embedding_model,
        log_level=settings.log_level,
    )

    yield

    # Shutdown
    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass

    await openai_client.close()
    await close_redis(redis_client)
    await close_database(pool)
    logger.info("application_shutdown")


app = FastAPI(
    title="Book Library Assistant API",
    description="Account sessions and a retrieval-augmented chatbot over the book catalog",
    version="0.1.0",
    lifespan=lifespan,
)

register_error_handlers(app)

# CORS middleware for browser clients; credentials are needed for the refresh cookie
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_HEADER],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

app.include_router(auth_router)
app.include_router(chatbot_router)
app.include_router(search_router)
app.include_router(admin_router)
app.include_router(router)
