"""Authentication API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
import structlog

from booklib.api.dependencies import (
    client_ip,
    get_app_settings,
    get_auth_service,
    get_current_user,
)
from booklib.config import Settings
from booklib.models.auth import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    UserSummary,
)
from booklib.models.user import User
from booklib.services.auth_service import AuthService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def set_refresh_cookie(response: Response, raw_token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=raw_token,
        max_age=settings.refresh_token_max_age,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


async def _issue_session(
    user: User,
    ip: Optional[str],
    response: Response,
    auth_service: AuthService,
    settings: Settings,
) -> AuthResponse:
    """Create an access token and a refresh cookie for a user."""
    raw_refresh = await auth_service.issue_refresh_token(user.id, ip)
    set_refresh_cookie(response, raw_refresh, settings)
    return AuthResponse(
        access_token=auth_service.create_access_token(user),
        expires_in=settings.access_token_expire_minutes * 60,
        user=UserSummary.from_user(user),
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    response: Response,
    ip: Optional[str] = Depends(client_ip),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Create an account and start a session.

    Raises:
        ValidationError 400: EMAIL_IN_USE if the email is already registered
    """
    user = await auth_service.register(body.email, body.password, body.name)
    return await _issue_session(user, ip, response, auth_service, settings)


@router.post("/login")
async def login(
    body: LoginRequest,
    response: Response,
    ip: Optional[str] = Depends(client_ip),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Login with email and password.

    Raises:
        AuthError 401: INVALID_CREDENTIALS; no cookie is set
    """
    user = await auth_service.authenticate(body.email, body.password)
    return await _issue_session(user, ip, response, auth_service, settings)


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    response: Response,
    ip: Optional[str] = Depends(client_ip),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Exchange the refresh cookie for a new access token and a rotated cookie.

    Raises:
        RefreshError 401: INVALID_REFRESH_TOKEN
    """
    raw_token = request.cookies.get(settings.refresh_cookie_name)
    user, new_raw = await auth_service.rotate_refresh_token(raw_token, ip)
    set_refresh_cookie(response, new_raw, settings)
    return AuthResponse(
        access_token=auth_service.create_access_token(user),
        expires_in=settings.access_token_expire_minutes * 60,
        user=UserSummary.from_user(user),
    )


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    ip: Optional[str] = Depends(client_ip),
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Revoke the refresh cookie's token and clear the cookie.

    Succeeds even if the token is unknown or already revoked.
    """
    raw_token = request.cookies.get(settings.refresh_cookie_name)
    await auth_service.revoke_refresh_token(raw_token, ip)
    clear_refresh_cookie(response, settings)
    logger.info("user_logged_out", user_id=str(current_user.id))
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Get current authenticated user info."""
    return MeResponse(user=UserSummary.from_user(current_user))
