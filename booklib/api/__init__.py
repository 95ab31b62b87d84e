"""API package exports."""

from booklib.api.middleware import CorrelationIdMiddleware
from booklib.api.routes import router

__all__ = ["router", "CorrelationIdMiddleware"]
