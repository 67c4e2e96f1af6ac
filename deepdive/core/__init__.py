"""Core infrastructure: settings, security, logging, exceptions."""

from .config import settings
from .exceptions import (
    AnswerValidationError,
    AppException,
    AuthenticationError,
    AuthorizationError,
    BadRequestError,
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RegistryError,
    UpstreamError,
)
from .security import (
    TokenData,
    create_access_token,
    decode_access_token,
    is_admin_token,
    verify_service_secret,
)


__all__ = [
    "AnswerValidationError",
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "BadRequestError",
    "ConfigurationError",
    "ConflictError",
    "ExternalServiceError",
    "NotFoundError",
    "RegistryError",
    "TokenData",
    "UpstreamError",
    "create_access_token",
    "decode_access_token",
    "is_admin_token",
    "settings",
    "verify_service_secret",
]
