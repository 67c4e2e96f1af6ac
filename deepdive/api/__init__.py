"""API module with routers and dependencies."""

from .app import create_api_app
from .dependencies import Caller, require_service_or_admin


__all__ = [
    "Caller",
    "create_api_app",
    "require_service_or_admin",
]
