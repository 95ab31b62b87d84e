"""Exception handlers mapping errors onto the JSON error envelope."""

from typing import Optional
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from booklib.api.middleware import CORRELATION_HEADER
from booklib.config import get_settings
from booklib.exceptions import AppError, AuthError, ErrorCode

logger = structlog.get_logger(__name__)

_HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.INVALID_TOKEN,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
}


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid4())


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Build the error envelope: {success: false, code, message}."""
    all_headers = {CORRELATION_HEADER: _correlation_id(request)}
    if headers:
        all_headers.update(headers)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "code": code, "message": message},
        headers=all_headers,
    )


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return settings.is_production


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error(request: Request, exc: AppError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "request_failed",
            path=request.url.path,
            code=exc.code.value,
            status_code=exc.status_code,
        )
        headers = None
        if isinstance(exc, AuthError) and exc.status_code == 401:
            headers = {"WWW-Authenticate": "Bearer"}
        return error_response(request, exc.status_code, exc.code.value, exc.message, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle Pydantic validation errors with a readable message.

        Returns 400 with the first offending field, e.g.
        "Field 'body.question': Value error, Question cannot be empty".
        """
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
            message = first_error.get("msg", "Validation failed")
            detail = f"Field '{field}': {message}"
        else:
            detail = "Request validation failed"

        logger.warning("validation_error", path=request.url.path, detail=detail)
        return error_response(request, 400, ErrorCode.VALIDATION_ERROR.value, detail)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _HTTP_STATUS_CODES.get(exc.status_code)
        return error_response(
            request,
            exc.status_code,
            code.value if code else f"HTTP_{exc.status_code}",
            str(exc.detail),
            getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            method=request.method,
            path=request.url.path,
            error_type=type(exc).__name__,
        )
        message = "An unexpected error occurred"
        if not _is_production(request):
            message = f"{message}: {type(exc).__name__}: {exc}"
        return error_response(request, 500, ErrorCode.INTERNAL_ERROR.value, message)
