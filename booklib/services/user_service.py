"""User management service."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from booklib.exceptions import ErrorCode, ValidationError
from booklib.models.user import User, UserRole

logger = structlog.get_logger(__name__)

_USER_COLUMNS = "id, email, name, role, avatar, created_at, updated_at"


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        role=UserRole(row["role"]),
        avatar=row["avatar"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class UserService:
    """Service for user lookups and registration."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create_user(
        self,
        email: str,
        password_hash: str,
        name: str,
        role: UserRole = UserRole.USER,
    ) -> User:
        """Create a new user.

        Args:
            email: Unique email address (compared case-insensitively)
            password_hash: Bcrypt hash of the user's password
            name: Display name
            role: Authorization role

        Returns:
            Created User model

        Raises:
            ValidationError: EMAIL_IN_USE if the email is already registered
        """
        user_id = uuid4()
        now = datetime.now(timezone.utc)

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO users (id, email, password_hash, name, role, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    user_id,
                    email,
                    password_hash,
                    name,
                    role.value,
                    now,
                    now,
                )
        except asyncpg.UniqueViolationError:
            logger.info("user_registration_rejected", reason="email_in_use")
            raise ValidationError("Email is already in use", ErrorCode.EMAIL_IN_USE)

        logger.info("user_created", user_id=str(user_id), role=role.value)

        return User(
            id=user_id,
            email=email,
            name=name,
            role=role,
            created_at=now,
            updated_at=now,
        )

    async def get_by_email(self, email: str) -> Optional[tuple[User, str]]:
        """Get a user by email (case-insensitive).

        Args:
            email: Email to look up

        Returns:
            Tuple of (User, password_hash) or None if not found
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_USER_COLUMNS}, password_hash
                FROM users
                WHERE LOWER(email) = LOWER($1)
                """,
                email,
            )

        if row is None:
            return None

        return _row_to_user(row), row["password_hash"]

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        """Get a user by UUID.

        Args:
            user_id: User UUID

        Returns:
            User model or None if not found
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_USER_COLUMNS}
                FROM users
                WHERE id = $1
                """,
                user_id,
            )

        if row is None:
            return None

        return _row_to_user(row)
