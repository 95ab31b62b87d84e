"""FastAPI dependencies for service access, authentication and authorization."""

import ipaddress
from typing import Optional

import structlog
from fastapi import Depends, Request

from booklib.config import Settings, get_settings
from booklib.exceptions import AuthError, ErrorCode
from booklib.models.user import User
from booklib.services.auth_service import AuthService
from booklib.services.chatbot_service import ChatbotService
from booklib.services.container import Services
from booklib.services.conversation_service import ConversationService
from booklib.services.embedding_service import EmbeddingService
from booklib.services.retrieval_service import RetrievalService

logger = structlog.get_logger(__name__)

# Width of refresh_tokens.created_by_ip / revoked_by_ip
MAX_IP_LENGTH = 64


def get_services(request: Request) -> Services:
    """Service container built in the application lifespan."""
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_auth_service(services: Services = Depends(get_services)) -> AuthService:
    return services.auth


def get_chatbot_service(services: Services = Depends(get_services)) -> ChatbotService:
    return services.chatbot


def get_conversation_service(
    services: Services = Depends(get_services),
) -> ConversationService:
    return services.conversations


def get_retrieval_service(services: Services = Depends(get_services)) -> RetrievalService:
    return services.retrieval


def get_embedding_service(services: Services = Depends(get_services)) -> EmbeddingService:
    return services.embeddings


def resolve_client_ip(request: Request, trusted_proxies: list[str]) -> Optional[str]:
    """Address recorded on refresh tokens for this request.

    The socket peer is used unless it is one of ``trusted_proxies``, in which
    case the first X-Forwarded-For hop is taken if it parses as an IP
    address. The result never exceeds MAX_IP_LENGTH characters.
    """
    peer = request.client.host if request.client else None

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and peer is not None and peer in trusted_proxies:
        first_hop = forwarded.split(",")[0].strip()
        try:
            return str(ipaddress.ip_address(first_hop))
        except ValueError:
            logger.warning("forwarded_for_rejected", peer=peer)

    return peer[:MAX_IP_LENGTH] if peer else None


def client_ip(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> Optional[str]:
    return resolve_client_ip(request, settings.trusted_proxies_list)


def bearer_token(request: Request) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthError: NO_TOKEN if the header is missing or not a Bearer token
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("No token provided", ErrorCode.NO_TOKEN)
    return token.strip()


async def get_current_user(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Resolve the user named by the Bearer access token.

    Returns:
        Authenticated User model

    Raises:
        AuthError: NO_TOKEN, INVALID_TOKEN, TOKEN_EXPIRED or USER_NOT_FOUND
    """
    token = bearer_token(request)
    return await auth_service.resolve_user(token)


async def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """Require the current user to have the admin role.

    Raises:
        AuthError: FORBIDDEN if the user is not an admin
    """
    if not current_user.is_admin:
        raise AuthError("Admin access required", ErrorCode.FORBIDDEN)
    return current_user
