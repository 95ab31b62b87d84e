"""Authentication service: passwords, access tokens and refresh token lifecycle."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import bcrypt
import jwt
import structlog

from booklib.config import Settings
from booklib.exceptions import AuthError, ErrorCode, RefreshError, ValidationError
from booklib.models.user import User
from booklib.services.token_repository import RefreshTokenRepository
from booklib.services.user_service import UserService

logger = structlog.get_logger(__name__)

JWT_ALGORITHM = "HS256"
REFRESH_TOKEN_BYTES = 48


def hash_refresh_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw refresh token; only the digest is stored."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Service for authentication, JWT management, and refresh token lifecycle."""

    def __init__(
        self,
        settings: Settings,
        tokens: RefreshTokenRepository,
        users: UserService,
    ):
        self.settings = settings
        self.tokens = tokens
        self.users = users

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_expire_days)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string
        """
        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise
        """
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            # Malformed stored hash
            return False

    def create_access_token(self, user: User, now: Optional[datetime] = None) -> str:
        """Create a signed JWT access token.

        Args:
            user: User the token is issued to
            now: Issue time (defaults to the current time)

        Returns:
            Encoded JWT string
        """
        now = now or _utcnow()
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "iat": now,
            "exp": now + self.access_token_ttl,
        }
        token = jwt.encode(payload, self.settings.jwt_secret, algorithm=JWT_ALGORITHM)
        logger.debug(
            "access_token_created",
            user_id=str(user.id),
            expires_minutes=self.settings.access_token_expire_minutes,
        )
        return token

    def validate_access_token(self, token: str, now: Optional[datetime] = None) -> dict:
        """Decode and validate a JWT access token.

        The signature is always checked first; only a correctly signed token
        can be reported as expired.

        Args:
            token: Encoded JWT string
            now: Reference time (defaults to the current time)

        Returns:
            Decoded payload dict with sub, email, role, iat, exp

        Raises:
            AuthError: INVALID_TOKEN if the token is malformed, badly signed
                or lacks a subject; TOKEN_EXPIRED if its expiry has passed
        """
        try:
            payload = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                options={
                    "require": ["sub", "exp"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            logger.info("access_token_invalid", error_type=type(e).__name__)
            raise AuthError("Invalid access token", ErrorCode.INVALID_TOKEN)

        try:
            UUID(str(payload["sub"]))
            expires_at = int(payload["exp"])
        except (TypeError, ValueError):
            raise AuthError("Invalid access token", ErrorCode.INVALID_TOKEN)

        now = now or _utcnow()
        if now.timestamp() >= expires_at:
            raise AuthError("Access token has expired", ErrorCode.TOKEN_EXPIRED)

        return payload

    async def resolve_user(self, token: str) -> User:
        """Validate an access token and load the user it names.

        Raises:
            AuthError: INVALID_TOKEN, TOKEN_EXPIRED or USER_NOT_FOUND
        """
        payload = self.validate_access_token(token)
        user = await self.users.get_by_id(UUID(str(payload["sub"])))
        if user is None:
            logger.warning("access_token_user_missing", user_id=str(payload["sub"]))
            raise AuthError("User not found", ErrorCode.USER_NOT_FOUND)
        return user

    async def register(self, email: str, password: str, name: str) -> User:
        """Create an account with a bcrypt-hashed password.

        Raises:
            ValidationError: EMAIL_IN_USE if the email is already registered
        """
        if await self.users.get_by_email(email) is not None:
            raise ValidationError("Email is already in use", ErrorCode.EMAIL_IN_USE)

        return await self.users.create_user(
            email=email,
            password_hash=self.hash_password(password),
            name=name,
        )

    async def authenticate(self, email: str, password: str) -> User:
        """Check credentials.

        Unknown email and wrong password are reported identically.

        Raises:
            AuthError: INVALID_CREDENTIALS
        """
        result = await self.users.get_by_email(email)
        if result is None or not self.verify_password(password, result[1]):
            logger.info("login_failed")
            raise AuthError("Invalid email or password", ErrorCode.INVALID_CREDENTIALS)

        user = result[0]
        logger.info("user_logged_in", user_id=str(user.id))
        return user

    async def issue_refresh_token(
        self,
        user_id: UUID,
        client_ip: Optional[str],
        now: Optional[datetime] = None,
    ) -> str:
        """Generate a refresh token and store its hash.

        Args:
            user_id: User UUID to bind the token to
            client_ip: Address the request came from
            now: Issue time (defaults to the current time)

        Returns:
            The raw token; it is handed to the client and never stored
        """
        raw_token, _ = await self._store_new_token(user_id, client_ip, now or _utcnow())
        return raw_token

    async def _store_new_token(
        self, user_id: UUID, client_ip: Optional[str], now: datetime
    ) -> tuple[str, str]:
        raw_token = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        token_hash = hash_refresh_token(raw_token)
        record = await self.tokens.insert(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=now + self.refresh_token_ttl,
            created_by_ip=client_ip,
            now=now,
        )
        logger.info(
            "refresh_token_created",
            user_id=str(user_id),
            token_id=str(record.id),
            expires_at=record.expires_at.isoformat(),
        )
        return raw_token, token_hash

    async def rotate_refresh_token(
        self,
        raw_token: Optional[str],
        client_ip: Optional[str],
        now: Optional[datetime] = None,
    ) -> tuple[User, str]:
        """Exchange an active refresh token for a new one.

        The successor is stored before the old token is revoked, and the
        revocation only succeeds if the old token is still active. Of several
        concurrent rotations of the same token exactly one wins; the losers
        revoke the successor they created and fail.

        Args:
            raw_token: Raw refresh token from the cookie
            client_ip: Address the request came from
            now: Reference time (defaults to the current time)

        Returns:
            Tuple of (User the token is bound to, new raw refresh token)

        Raises:
            RefreshError: INVALID_REFRESH_TOKEN for unknown, revoked or
                expired tokens, or when the bound user no longer exists
        """
        if not raw_token:
            raise RefreshError("Invalid refresh token")

        now = now or _utcnow()
        old_hash = hash_refresh_token(raw_token)
        record = await self.tokens.find_by_hash(old_hash)

        if record is None:
            logger.warning("refresh_token_rejected", reason="not_found")
            raise RefreshError("Invalid refresh token")

        if not record.is_active(now):
            logger.warning(
                "refresh_token_rejected",
                reason="revoked" if record.revoked_at is not None else "expired",
                user_id=str(record.user_id),
            )
            raise RefreshError("Invalid refresh token")

        user = await self.users.get_by_id(record.user_id)
        if user is None:
            logger.warning("refresh_token_rejected", reason="user_missing")
            raise RefreshError("Invalid refresh token")

        new_raw, new_hash = await self._store_new_token(user.id, client_ip, now)

        won = await self.tokens.revoke_if_active(
            old_hash, now, revoked_by_ip=client_ip, replaced_by=new_hash
        )
        if not won:
            await self.tokens.revoke(new_hash, now, revoked_by_ip=client_ip)
            logger.warning(
                "refresh_token_rotation_lost_race",
                user_id=str(user.id),
            )
            raise RefreshError("Invalid refresh token")

        logger.info("refresh_token_rotated", user_id=str(user.id))
        return user, new_raw

    async def revoke_refresh_token(
        self,
        raw_token: Optional[str],
        client_ip: Optional[str],
        now: Optional[datetime] = None,
    ) -> bool:
        """Revoke a refresh token on logout.

        Unknown or already-revoked tokens are ignored.

        Returns:
            True if a token was revoked by this call
        """
        if not raw_token:
            return False

        revoked = await self.tokens.revoke(
            hash_refresh_token(raw_token), now or _utcnow(), revoked_by_ip=client_ip
        )
        logger.info("refresh_token_logout", revoked=revoked)
        return revoked

    async def sweep_expired_tokens(self, now: Optional[datetime] = None) -> int:
        """Delete refresh token rows past their expiry.

        Returns:
            Number of rows deleted
        """
        deleted = await self.tokens.delete_expired(now or _utcnow())
        logger.info("refresh_tokens_swept", deleted=deleted)
        return deleted
