"""Model profile and provider credential repository using SQLAlchemy ORM.

Credential keys are stored Fernet-encrypted and only decrypted here on the
way out to the resolver.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select

from deepdive.core.encryption import decrypt_api_key
from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session
from deepdive.database.orm import AIModelProfile, APICredential


logger = get_logger("repositories.ai_models")


def _profile_to_dict(row: AIModelProfile) -> dict[str, Any]:
    return {
        "slug": row.slug,
        "label": row.label,
        "provider": row.provider,
        "model_name": row.model_name,
        "base_url": row.base_url,
        "tier": row.tier,
        "price_in": float(row.price_in or 0),
        "price_out": float(row.price_out or 0),
        "metadata": dict(row.metadata_ or {}),
        "is_active": bool(row.is_active),
    }


def _credential_to_dict(row: APICredential) -> dict[str, Any] | None:
    api_key = decrypt_api_key(row.encrypted_key)
    if not api_key:
        logger.warning(
            "Credential could not be decrypted",
            extra={"credential_id": str(row.id), "provider": row.provider},
        )
        return None
    return {
        "id": str(row.id),
        "provider": row.provider,
        "api_key": api_key,
        "tier": row.tier,
        "scopes": list(row.scopes or []),
        "metadata": dict(row.metadata_ or {}),
    }


async def get_model_profile(slug: str) -> dict[str, Any] | None:
    """Get a model profile by slug, active or not."""
    async with get_session() as session:
        row = await session.get(AIModelProfile, slug)
        return _profile_to_dict(row) if row else None


async def get_credential_by_id(credential_id: str, provider: str) -> dict[str, Any] | None:
    """Get an active credential by id for the given provider."""
    try:
        key = uuid.UUID(str(credential_id))
    except ValueError:
        return None

    async with get_session() as session:
        result = await session.execute(
            select(APICredential).where(
                APICredential.id == key,
                APICredential.provider == provider,
                APICredential.is_active.is_(True),
            )
        )
        row = result.scalar_one_or_none()
        return _credential_to_dict(row) if row else None


async def get_credential_by_scope(provider: str, scope: str) -> dict[str, Any] | None:
    """Most recently updated active credential for a provider carrying a scope."""
    async with get_session() as session:
        result = await session.execute(
            select(APICredential)
            .where(
                APICredential.provider == provider,
                APICredential.is_active.is_(True),
                APICredential.scopes.contains([scope]),
            )
            .order_by(APICredential.updated_at.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _credential_to_dict(row) if row else None
