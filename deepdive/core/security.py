"""Security utilities: JWT verification and service-to-service auth."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import jwt
from pydantic import BaseModel, Field

from .config import settings
from .exceptions import AuthenticationError


# JWT Configuration
JWT_ALGORITHM = "HS256"
JWT_ISSUER = "deepdive"
JWT_AUDIENCE = "deepdive-api"

PRIVILEGED_ROLES = frozenset(
    {"admin", "administrator", "superadmin", "owner", "editor", "staff"}
)
ADMIN_FLAG_KEYS = ("is_admin", "admin", "is_superadmin", "superuser", "staff", "is_staff")


class TokenData(BaseModel):
    """Decoded JWT token data."""

    sub: str
    exp: datetime
    iat: datetime
    iss: str
    aud: str
    jti: str
    is_admin: bool = False
    roles: list[str] = Field(default_factory=list)
    email: Optional[str] = None


def create_access_token(
    subject: str,
    is_admin: bool = False,
    roles: Iterable[str] | None = None,
    email: str | None = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT access token (used by operator tooling and tests)."""
    now = datetime.now(timezone.utc)
    expires = now + (expires_delta or timedelta(hours=1))

    payload = {
        "sub": subject,
        "exp": expires,
        "iat": now,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "jti": secrets.token_urlsafe(16),
        "is_admin": is_admin,
        "roles": list(roles or []),
    }
    if email:
        payload["email"] = email

    return jwt.encode(payload, settings.auth_secret, algorithm=JWT_ALGORITHM)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(value, tz=timezone.utc)


def decode_access_token(token: str) -> TokenData:
    """Decode and validate JWT access token."""
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret,
            algorithms=[JWT_ALGORITHM],
            issuer=JWT_ISSUER,
            audience=JWT_AUDIENCE,
            options={
                "require": ["exp", "iat", "sub", "iss", "aud", "jti"],
            },
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(
            message="Invalid or expired session token", error_code="TOKEN_EXPIRED"
        )
    except jwt.InvalidTokenError:
        raise AuthenticationError(
            message="Invalid or expired session token", error_code="INVALID_TOKEN"
        )

    return TokenData(
        sub=payload["sub"],
        exp=_as_datetime(payload["exp"]),
        iat=_as_datetime(payload["iat"]),
        iss=payload["iss"],
        aud=payload["aud"],
        jti=payload["jti"],
        is_admin=any(bool(payload.get(key)) for key in ADMIN_FLAG_KEYS),
        roles=sorted(collect_roles(payload.get("roles")) | collect_roles(payload.get("role"))),
        email=payload.get("email"),
    )


def collect_roles(source: Any) -> set[str]:
    """Flatten role claims (strings, lists, nested dicts) into lowercase names."""
    bucket: set[str] = set()
    if not source:
        return bucket
    if isinstance(source, (list, tuple, set)):
        for entry in source:
            bucket |= collect_roles(entry)
        return bucket
    if isinstance(source, dict):
        for entry in source.values():
            bucket |= collect_roles(entry)
        return bucket
    for part in str(source).replace(",", " ").split():
        if part.strip():
            bucket.add(part.strip().lower())
    return bucket


def is_admin_token(token_data: TokenData) -> bool:
    """True when the token holder carries an admin flag or privileged role."""
    if token_data.is_admin:
        return True
    return any(role in PRIVILEGED_ROLES for role in token_data.roles)


def verify_service_secret(provided: str | None) -> bool:
    """Constant-time comparison against the automation service secret."""
    expected = settings.automation_service_secret
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
