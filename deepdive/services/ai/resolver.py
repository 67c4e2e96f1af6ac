"""
Model and credential resolution.

Maps a logical model slug to a provider profile, then finds a secret for
that provider: an explicit credential, then scoped credentials, then
environment keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from sqlalchemy.exc import SQLAlchemyError

from deepdive.core.config import settings
from deepdive.core.encryption import get_key_hint
from deepdive.core.exceptions import ConfigurationError
from deepdive.core.logging import get_logger
from deepdive.repositories import ai_models_orm


logger = get_logger("ai.resolver")

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
}

ENV_CREDENTIAL_KEYS: dict[str, tuple[str, ...]] = {
    "openrouter": ("OPENROUTER_API_KEY", "OPENAI_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
}

DEFAULT_SCOPES: tuple[str, ...] = ("automation", "editor")


@dataclass(frozen=True)
class ModelProfile:
    """Concrete provider model behind a logical slug."""
    slug: str
    provider: str
    model_name: str
    base_url: str | None = None
    label: str | None = None
    tier: str | None = None
    price_in: float = 0.0
    price_out: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ModelProfile":
        return cls(
            slug=str(row.get("slug") or ""),
            provider=str(row.get("provider") or "openai").lower(),
            model_name=str(row.get("model_name") or row.get("slug") or ""),
            base_url=row.get("base_url"),
            label=row.get("label"),
            tier=row.get("tier"),
            price_in=float(row.get("price_in") or 0),
            price_out=float(row.get("price_out") or 0),
            metadata=dict(row.get("metadata") or {}),
        )


@dataclass(frozen=True)
class Credential:
    """Provider secret plus routing metadata."""
    id: str
    provider: str
    api_key: str = field(repr=False)
    tier: str | None = None
    scopes: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Credential":
        return cls(
            id=str(row["id"]),
            provider=str(row.get("provider") or "openai").lower(),
            api_key=str(row["api_key"]),
            tier=row.get("tier"),
            scopes=tuple(row.get("scopes") or ()),
            metadata=dict(row.get("metadata") or {}),
        )


# =============================================================================
# RESOLUTION
# =============================================================================


async def _fetch_active_model(slug: str | None) -> ModelProfile | None:
    if not slug:
        return None
    row = await ai_models_orm.get_model_profile(slug)
    if not row or not row.get("is_active", True):
        return None
    return ModelProfile.from_row(row)


async def resolve_model(slug: str, fallback_slug: str | None = None) -> ModelProfile:
    """
    Resolve a model slug, trying the fallback slug when the primary is
    missing or inactive.

    Raises:
        ConfigurationError: Neither slug resolves to an active profile
    """
    model = await _fetch_active_model(slug)
    if model is None and fallback_slug and fallback_slug != slug:
        model = await _fetch_active_model(fallback_slug)
        if model is not None:
            logger.info(
                "Using fallback model",
                extra={"requested_model": slug, "fallback_model": fallback_slug},
            )
    if model is None:
        raise ConfigurationError(
            f'Model "{slug or fallback_slug or "unknown"}" is not configured',
            details={"model": slug, "fallback": fallback_slug},
        )
    return model


def _env_credential(provider: str, env_key: str) -> Credential | None:
    value = getattr(settings, env_key.lower(), "")
    if not value:
        return None
    logger.info(
        "Using environment credential",
        extra={"provider": provider, "env_key": env_key, "key_hint": get_key_hint(value)},
    )
    return Credential(
        id=f"env:{env_key}",
        provider=provider,
        api_key=value,
        tier="env",
        scopes=("env",),
    )


async def resolve_credential(
    provider: str,
    credential_id: str | None = None,
    prefer_scopes: Sequence[str] = DEFAULT_SCOPES,
    allow_env_fallback: bool = True,
    env_keys: Sequence[str] | None = None,
) -> Credential:
    """
    Find a credential for a provider.

    Order: explicit id, then the newest active credential per preferred
    scope, then environment keys. Lookup failures are logged and the next
    source is tried.

    Raises:
        ConfigurationError: No source yields a credential
    """
    provider = (provider or "openai").lower()

    if credential_id:
        try:
            row = await ai_models_orm.get_credential_by_id(credential_id, provider)
            if row:
                return Credential.from_row(row)
        except SQLAlchemyError as e:
            logger.error(
                "Credential lookup failed",
                extra={"credential_id": credential_id, "provider": provider, "error": str(e)},
            )

    for scope in prefer_scopes:
        try:
            row = await ai_models_orm.get_credential_by_scope(provider, scope)
            if row:
                return Credential.from_row(row)
        except SQLAlchemyError as e:
            logger.error(
                "Credential lookup failed for scope",
                extra={"scope": scope, "provider": provider, "error": str(e)},
            )

    if allow_env_fallback:
        for key in env_keys or ENV_CREDENTIAL_KEYS.get(provider, ()):
            credential = _env_credential(provider, key)
            if credential:
                return credential

    raise ConfigurationError(
        f"No credential configured for provider {provider}",
        details={"provider": provider},
    )


# =============================================================================
# ENDPOINT
# =============================================================================


def resolve_base_url(model: ModelProfile, credential: Credential) -> str:
    """Provider base URL: credential metadata, model metadata, model row, default."""
    candidate = (
        credential.metadata.get("base_url")
        if isinstance(credential.metadata.get("base_url"), str)
        else None
    )
    if not candidate and isinstance(model.metadata.get("base_url"), str):
        candidate = model.metadata["base_url"]
    if not candidate:
        candidate = model.base_url
    if not candidate:
        candidate = DEFAULT_BASE_URLS.get(model.provider, DEFAULT_BASE_URLS["openai"])
    return candidate.rstrip("/")


def build_provider_headers(model: ModelProfile, credential: Credential) -> dict[str, str]:
    """
    Extra HTTP headers for a provider request.

    Credential metadata headers are applied before model metadata headers;
    neither replaces a header that is already set.
    """
    headers: dict[str, str] = {}

    if model.provider == "openrouter":
        headers["HTTP-Referer"] = str(
            credential.metadata.get("referer")
            or model.metadata.get("referer")
            or settings.openrouter_referer
        )
        headers["X-Title"] = str(
            credential.metadata.get("title")
            or model.metadata.get("title")
            or settings.openrouter_title
        )

    for source in (credential.metadata.get("headers"), model.metadata.get("headers")):
        if not isinstance(source, dict):
            continue
        for key, value in source.items():
            if key and isinstance(value, str) and key not in headers:
                headers[key] = value

    return headers
