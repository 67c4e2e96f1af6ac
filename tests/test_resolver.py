"""Tests for model and credential resolution."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from deepdive.core.exceptions import ConfigurationError
from deepdive.services.ai import (
    Credential,
    ModelProfile,
    build_provider_headers,
    resolve_base_url,
    resolve_credential,
    resolve_model,
)


REPO = "deepdive.services.ai.resolver.ai_models_orm"


def _profile_row(slug: str, active: bool = True, **extra) -> dict:
    return {
        "slug": slug,
        "provider": "openai",
        "model_name": slug,
        "price_in": 0.25,
        "price_out": 2.0,
        "is_active": active,
        **extra,
    }


@pytest.fixture
def models_repo(mocker):
    return {
        "profile": mocker.patch(f"{REPO}.get_model_profile", new_callable=AsyncMock, return_value=None),
        "by_id": mocker.patch(f"{REPO}.get_credential_by_id", new_callable=AsyncMock, return_value=None),
        "by_scope": mocker.patch(f"{REPO}.get_credential_by_scope", new_callable=AsyncMock, return_value=None),
    }


class TestResolveModel:
    """Tests for resolve_model."""

    @pytest.mark.asyncio
    async def test_primary_model(self, models_repo):
        models_repo["profile"].return_value = _profile_row("gpt-5-mini")

        model = await resolve_model("gpt-5-mini", "gpt-4o-mini")

        assert model.slug == "gpt-5-mini"
        assert model.price_out == 2.0
        models_repo["profile"].assert_awaited_once_with("gpt-5-mini")

    @pytest.mark.asyncio
    async def test_inactive_primary_uses_fallback(self, models_repo):
        rows = {
            "gpt-5-mini": _profile_row("gpt-5-mini", active=False),
            "gpt-4o-mini": _profile_row("gpt-4o-mini"),
        }
        models_repo["profile"].side_effect = lambda slug: rows.get(slug)

        model = await resolve_model("gpt-5-mini", "gpt-4o-mini")

        assert model.slug == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_unresolvable_model_raises(self, models_repo):
        with pytest.raises(ConfigurationError) as exc_info:
            await resolve_model("ghost-model", "also-missing")
        assert "ghost-model" in exc_info.value.message


class TestResolveCredential:
    """Tests for resolve_credential."""

    @pytest.mark.asyncio
    async def test_explicit_credential(self, models_repo):
        models_repo["by_id"].return_value = {"id": "cred-7", "provider": "openai", "api_key": "sk-7"}

        credential = await resolve_credential("openai", credential_id="cred-7")

        assert credential.id == "cred-7"
        assert credential.api_key == "sk-7"
        models_repo["by_scope"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scopes_in_preference_order(self, models_repo):
        rows = {"editor": {"id": "cred-editor", "provider": "openai", "api_key": "sk-e"}}
        models_repo["by_scope"].side_effect = lambda provider, scope: rows.get(scope)

        credential = await resolve_credential("openai")

        assert credential.id == "cred-editor"
        scopes = [call.args[1] for call in models_repo["by_scope"].await_args_list]
        assert scopes == ["automation", "editor"]

    @pytest.mark.asyncio
    async def test_lookup_errors_fall_through_to_env(self, models_repo, test_settings, monkeypatch):
        models_repo["by_scope"].side_effect = OperationalError("SELECT", {}, Exception("down"))
        monkeypatch.setattr(test_settings, "openai_api_key", "sk-env")

        credential = await resolve_credential("openai")

        assert credential.id == "env:OPENAI_API_KEY"
        assert credential.api_key == "sk-env"

    @pytest.mark.asyncio
    async def test_openrouter_falls_back_to_openai_key(self, models_repo, test_settings, monkeypatch):
        monkeypatch.setattr(test_settings, "openai_api_key", "sk-env")

        credential = await resolve_credential("OpenRouter")

        assert credential.provider == "openrouter"
        assert credential.id == "env:OPENAI_API_KEY"

    @pytest.mark.asyncio
    async def test_no_credential_raises(self, models_repo):
        with pytest.raises(ConfigurationError):
            await resolve_credential("openai")

    @pytest.mark.asyncio
    async def test_env_fallback_can_be_disabled(self, models_repo, test_settings, monkeypatch):
        monkeypatch.setattr(test_settings, "openai_api_key", "sk-env")
        with pytest.raises(ConfigurationError):
            await resolve_credential("openai", allow_env_fallback=False)


class TestEndpoint:
    """Tests for resolve_base_url and build_provider_headers."""

    def test_base_url_precedence(self):
        model = ModelProfile(slug="m", provider="openrouter", model_name="m", base_url="https://row/v1/")
        plain = Credential(id="c", provider="openrouter", api_key="k")
        routed = Credential(id="c", provider="openrouter", api_key="k", metadata={"base_url": "https://cred/v1"})

        assert resolve_base_url(model, routed) == "https://cred/v1"
        assert resolve_base_url(model, plain) == "https://row/v1"

    def test_default_base_url(self):
        model = ModelProfile(slug="m", provider="openrouter", model_name="m")
        assert resolve_base_url(model, Credential(id="c", provider="openrouter", api_key="k")) == (
            "https://openrouter.ai/api/v1"
        )

    def test_openrouter_headers_and_metadata_precedence(self):
        model = ModelProfile(
            slug="m",
            provider="openrouter",
            model_name="m",
            metadata={"headers": {"X-Trace": "model", "X-Model": "yes"}},
        )
        credential = Credential(
            id="c",
            provider="openrouter",
            api_key="k",
            metadata={"title": "Deep Dive", "headers": {"X-Trace": "credential"}},
        )

        headers = build_provider_headers(model, credential)

        assert headers["X-Title"] == "Deep Dive"
        assert "HTTP-Referer" in headers
        assert headers["X-Trace"] == "credential"
        assert headers["X-Model"] == "yes"

    def test_openai_has_no_extra_headers(self, model_profile, credential):
        assert build_provider_headers(model_profile, credential) == {}

    def test_api_key_is_not_in_repr(self, credential):
        assert "sk-test" not in repr(credential)
