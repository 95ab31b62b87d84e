"""Services package exports."""

from booklib.services.container import Services, build_services
from booklib.services.logging_service import configure_logging

__all__ = [
    "Services",
    "build_services",
    "configure_logging",
]
