"""Domain error taxonomy shared by services and the HTTP layer."""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable machine-readable error codes returned to clients."""

    # Access token / identity
    NO_TOKEN = "NO_TOKEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    # Refresh token
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"

    # Retrieval
    EMBEDDING_SERVICE_ERROR = "EMBEDDING_SERVICE_ERROR"
    NOT_FOUND = "NOT_FOUND"

    # Generation
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    STREAM_INTERRUPTED = "STREAM_INTERRUPTED"

    # Input
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EMAIL_IN_USE = "EMAIL_IN_USE"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """Base class for errors that map onto a client-facing response."""

    default_code = ErrorCode.INTERNAL_ERROR
    default_status = 500
    status_overrides: dict[ErrorCode, int] = {}

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    @property
    def status_code(self) -> int:
        return self.status_overrides.get(self.code, self.default_status)


class AuthError(AppError):
    """Access token missing, invalid, expired, or insufficient."""

    default_code = ErrorCode.INVALID_TOKEN
    default_status = 401
    status_overrides = {ErrorCode.FORBIDDEN: 403}

    @property
    def retryable_after_refresh(self) -> bool:
        """Only an expired access token should trigger a refresh-and-retry."""
        return self.code == ErrorCode.TOKEN_EXPIRED


class RefreshError(AppError):
    """Refresh token unknown, revoked, or expired (never distinguished)."""

    default_code = ErrorCode.INVALID_REFRESH_TOKEN
    default_status = 401


class RetrievalError(AppError):
    """Embedding or vector lookup failure."""

    default_code = ErrorCode.EMBEDDING_SERVICE_ERROR
    default_status = 502
    status_overrides = {ErrorCode.NOT_FOUND: 404}


class GenerationError(AppError):
    """Language model call failed or a stream was cut short."""

    default_code = ErrorCode.MODEL_UNAVAILABLE
    default_status = 502


class ValidationError(AppError):
    """Malformed input rejected before any side effect."""

    default_code = ErrorCode.VALIDATION_ERROR
    default_status = 400
