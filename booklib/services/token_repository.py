"""Persistence for refresh token records."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from booklib.models.user import RefreshToken

logger = structlog.get_logger(__name__)

_TOKEN_COLUMNS = """
    id, user_id, token_hash, expires_at, created_by_ip,
    revoked_at, revoked_by_ip, replaced_by_token, created_at
"""


def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 1'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _row_to_token(row) -> RefreshToken:
    return RefreshToken(
        id=row["id"],
        user_id=row["user_id"],
        token_hash=row["token_hash"],
        expires_at=row["expires_at"],
        created_by_ip=row["created_by_ip"],
        revoked_at=row["revoked_at"],
        revoked_by_ip=row["revoked_by_ip"],
        replaced_by_token=row["replaced_by_token"],
        created_at=row["created_at"],
    )


class RefreshTokenRepository:
    """Raw SQL access to the refresh_tokens table.

    Every state change is a single statement so that concurrent callers
    racing on the same token are resolved by the database.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert(
        self,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
        created_by_ip: Optional[str],
        now: datetime,
    ) -> RefreshToken:
        """Persist a new active token record."""
        token_id = uuid4()

        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO refresh_tokens (id, user_id, token_hash, expires_at, created_by_ip, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                token_id,
                user_id,
                token_hash,
                expires_at,
                created_by_ip,
                now,
            )

        return RefreshToken(
            id=token_id,
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_by_ip=created_by_ip,
            created_at=now,
        )

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_TOKEN_COLUMNS}
                FROM refresh_tokens
                WHERE token_hash = $1
                """,
                token_hash,
            )

        if row is None:
            return None
        return _row_to_token(row)

    async def revoke_if_active(
        self,
        token_hash: str,
        now: datetime,
        revoked_by_ip: Optional[str],
        replaced_by: Optional[str],
    ) -> bool:
        """Revoke a token only if it is still active (compare-and-set).

        Returns:
            True if this call revoked the token, False if it was already
            revoked, expired, or unknown
        """
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = $2, revoked_by_ip = $3, replaced_by_token = $4
                WHERE token_hash = $1 AND revoked_at IS NULL AND expires_at > $2
                """,
                token_hash,
                now,
                revoked_by_ip,
                replaced_by,
            )

        return _affected_rows(status) == 1

    async def revoke(
        self, token_hash: str, now: datetime, revoked_by_ip: Optional[str]
    ) -> bool:
        """Revoke a token without recording a replacement.

        Already-revoked rows keep their original revocation data.
        """
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = $2, revoked_by_ip = $3
                WHERE token_hash = $1 AND revoked_at IS NULL
                """,
                token_hash,
                now,
                revoked_by_ip,
            )

        return _affected_rows(status) == 1

    async def delete_expired(self, now: datetime) -> int:
        """Delete every record past its expiry, revoked or not."""
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                DELETE FROM refresh_tokens
                WHERE expires_at <= $1
                """,
                now,
            )

        return _affected_rows(status)
