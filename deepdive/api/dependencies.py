"""API dependencies for authentication."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, Query

from deepdive.core.exceptions import AuthenticationError, AuthorizationError
from deepdive.core.logging import get_logger
from deepdive.core.security import (
    TokenData,
    decode_access_token,
    is_admin_token,
    verify_service_secret,
)


logger = get_logger("api.auth")

__all__ = [
    "Caller",
    "require_service_or_admin",
]


@dataclass(frozen=True)
class Caller:
    """Authenticated caller of an automation endpoint."""
    kind: str
    subject: str
    token: TokenData | None = None


def _extract_bearer(authorization: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    return None


async def require_service_or_admin(
    authorization: str | None = Header(default=None),
    x_automation_secret: str | None = Header(default=None, alias="x-automation-secret"),
    automation_secret: str | None = Query(default=None),
) -> Caller:
    """
    Require the automation secret or an admin bearer token.

    The shared secret is read from the ``x-automation-secret`` header or the
    ``automation_secret`` query parameter and compared in constant time.

    Raises:
        AuthenticationError: No valid secret and no valid bearer token
        AuthorizationError: Bearer token holder is not an admin
    """
    provided = x_automation_secret or automation_secret
    if provided and verify_service_secret(provided):
        return Caller(kind="service", subject="automation")

    token = _extract_bearer(authorization)
    if not token:
        raise AuthenticationError(
            message="Authentication required",
            error_code="MISSING_CREDENTIALS",
        )

    token_data = decode_access_token(token)
    if not is_admin_token(token_data):
        logger.warning("Non-admin caller rejected", extra={"sub": token_data.sub})
        raise AuthorizationError(
            message="Admin privileges required",
            error_code="ADMIN_REQUIRED",
        )
    return Caller(kind="user", subject=token_data.sub, token=token_data)
