"""User and refresh token models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class UserRole(str, Enum):
    """Authorization roles."""

    USER = "user"
    ADMIN = "admin"


class User(BaseModel):
    """A registered library user."""

    id: UUID
    email: str
    name: str
    role: UserRole = UserRole.USER
    avatar: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class RefreshToken(BaseModel):
    """A persisted refresh token record (only the hash of the secret is kept)."""

    id: UUID
    user_id: UUID
    token_hash: str
    expires_at: datetime
    created_by_ip: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoked_by_ip: Optional[str] = None
    replaced_by_token: Optional[str] = None
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        """Active iff never revoked and not yet expired."""
        return self.revoked_at is None and not self.is_expired(now)
