"""Auth request and response models with validation."""

from typing import Optional
from uuid import UUID

from pydantic import EmailStr, Field, field_validator

from booklib.models.base import ApiModel
from booklib.models.user import User, UserRole


class RegisterRequest(ApiModel):
    """New account details.

    Attributes:
        email: Unique email address
        password: Password (min 6 chars)
        name: Display name (required, non-blank)
    """

    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Name cannot be empty")
        return stripped


class LoginRequest(ApiModel):
    """Login credentials."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class UserSummary(ApiModel):
    """Public user fields returned by the auth endpoints."""

    id: UUID
    email: str
    name: str
    role: UserRole
    avatar: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            avatar=user.avatar,
        )


class AuthResponse(ApiModel):
    """Successful authentication: a fresh access token and the user.

    The refresh token never appears in the body; it travels in an httpOnly
    cookie.
    """

    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=1, description="Access token lifetime in seconds")
    user: UserSummary


class MeResponse(ApiModel):
    user: UserSummary
