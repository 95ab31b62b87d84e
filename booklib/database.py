"""Database connection pool, migrations, and pgvector helpers."""

from pathlib import Path
from typing import Optional

import asyncpg
import structlog

from booklib.config import Settings

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"


def embedding_to_pgvector(embedding: list[float] | None) -> str | None:
    """Convert embedding list to pgvector string format.

    pgvector expects embeddings as '[0.1, 0.2, ...]' string format.
    """
    if embedding is None:
        return None
    return "[" + ",".join(str(x) for x in embedding) + "]"


def pgvector_to_embedding(pgvector_str: str | list | None) -> list[float] | None:
    """Convert pgvector string format back to embedding list.

    asyncpg returns pgvector columns as strings like '[0.1,0.2,...]'.
    """
    if pgvector_str is None:
        return None
    if isinstance(pgvector_str, list):
        return pgvector_str
    inner = pgvector_str.strip("[]")
    if not inner:
        return []
    return [float(x) for x in inner.split(",")]


async def init_database(settings: Settings) -> asyncpg.Pool:
    """Create the database connection pool.

    Args:
        settings: Application settings carrying the Postgres DSN

    Returns:
        asyncpg connection pool
    """
    try:
        pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=2,
            max_size=10,
            command_timeout=60,
        )
        logger.info("database_pool_created", min_size=2, max_size=10)
        return pool
    except Exception as e:
        logger.error("database_pool_creation_failed", error=str(e))
        raise


async def close_database(pool: Optional[asyncpg.Pool]) -> None:
    """Close the database connection pool."""
    if pool is not None:
        await pool.close()
        logger.info("database_pool_closed")


async def run_migrations(pool: asyncpg.Pool, migrations_dir: Path = MIGRATIONS_DIR) -> None:
    """Run all SQL migrations in order.

    Migrations are idempotent (IF NOT EXISTS) and can be re-run safely.
    """
    if not migrations_dir.exists():
        logger.warning("migrations_directory_not_found", path=str(migrations_dir))
        return

    migration_files = sorted(migrations_dir.glob("*.sql"))

    if not migration_files:
        logger.info("no_migrations_found")
        return

    async with pool.acquire() as conn:
        for migration_file in migration_files:
            try:
                await conn.execute(migration_file.read_text())
                logger.info("migration_applied", file=migration_file.name)
            except Exception as e:
                logger.error(
                    "migration_failed",
                    file=migration_file.name,
                    error=str(e),
                )
                raise


async def health_check(pool: Optional[asyncpg.Pool]) -> bool:
    """Check database connectivity.

    Returns:
        True if database is healthy, False otherwise
    """
    if pool is None:
        return False
    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            return result == 1
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
