"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient

from deepdive.core.config import settings
from deepdive.services.ai import (
    Credential,
    ModelProfile,
    PromptLibrary,
    resolve_stage3_plan,
)
from deepdive.services.deep_dive import (
    Dimension,
    QuestionDefinition,
    QuestionOutcome,
)
from deepdive.services.deep_dive.context import PipelineContext, TickerContext


SERVICE_SECRET = "test-automation-secret"
RUN_ID = "6f1c2d3e-4a5b-4c6d-8e7f-9a0b1c2d3e4f"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings: no lock backend, no live providers, known secret."""
    monkeypatch.setattr(settings, "automation_service_secret", SERVICE_SECRET)
    monkeypatch.setattr(settings, "run_lock_enabled", False)
    monkeypatch.setattr(settings, "openai_api_key", "")
    monkeypatch.setattr(settings, "openrouter_api_key", "")
    monkeypatch.setattr(settings, "resend_api_key", "")
    monkeypatch.setattr(settings, "resend_from_email", "")
    monkeypatch.setattr(settings, "alerts_public_base_url", "https://alerts.example.com/")
    monkeypatch.setattr(settings, "site_base_url", "")
    monkeypatch.setattr(settings, "prompt_template_dir", "")
    monkeypatch.delenv("STAGE3_CACHE_TTL_MINUTES", raising=False)
    monkeypatch.delenv("AI_CACHE_TTL_MINUTES", raising=False)
    return settings


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Test client without lifespan (no database or Valkey connections)."""
    from deepdive.api.app import create_api_app

    app = create_api_app()
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_token() -> str:
    """JWT for a regular (non-admin) user."""
    from deepdive.core.security import create_access_token
    return create_access_token("test_user", is_admin=False)


@pytest.fixture
def admin_token() -> str:
    """JWT for an admin user."""
    from deepdive.core.security import create_access_token
    return create_access_token("test_admin", is_admin=True)


@pytest.fixture
def auth_headers(auth_token: str) -> dict:
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def service_headers() -> dict:
    return {"x-automation-secret": SERVICE_SECRET}


# ============================================================================
# Registry fixtures
# ============================================================================


@pytest.fixture
def moat_dimension() -> Dimension:
    return Dimension(
        id="dim-moat",
        slug="moat",
        name="Moat",
        weight=1.0,
        order_index=1,
        color_bad="#d9534f",
        color_neutral="#f0ad4e",
        color_good="#5cb85c",
    )


@pytest.fixture
def risk_dimension() -> Dimension:
    return Dimension(id="dim-risk", slug="risk", name="Risk", weight=2.0, order_index=2)


@pytest.fixture
def make_question(moat_dimension) -> Callable[..., QuestionDefinition]:
    """Factory for registry questions."""
    def _make(
        slug: str,
        *,
        dimension: Dimension | None = None,
        depends_on: tuple[str, ...] = (),
        weight: float = 1.0,
        order_index: int = 0,
        answer_schema: dict[str, Any] | None = None,
    ) -> QuestionDefinition:
        return QuestionDefinition(
            id=f"q-{slug}",
            slug=slug,
            dimension=dimension or moat_dimension,
            prompt=f"Assess {slug}.",
            title=slug.replace("-", " ").title(),
            weight=weight,
            answer_schema=answer_schema or {},
            depends_on=depends_on,
            order_index=order_index,
        )
    return _make


@pytest.fixture
def make_outcome() -> Callable[..., QuestionOutcome]:
    """Factory for question outcomes."""
    def _make(
        question: QuestionDefinition,
        verdict: str = "neutral",
        score: float | None = None,
        summary: str = "",
        tags: list[str] | None = None,
    ) -> QuestionOutcome:
        return QuestionOutcome(
            question=question,
            verdict=verdict,
            score=score,
            summary=summary,
            tags=tags or [],
            answer={"verdict": verdict, "score": score},
            citations=[],
        )
    return _make


# ============================================================================
# Model / pipeline fixtures
# ============================================================================


@pytest.fixture
def model_profile() -> ModelProfile:
    return ModelProfile(
        slug="gpt-5-mini",
        provider="openai",
        model_name="gpt-5-mini",
        price_in=1.0,
        price_out=4.0,
    )


@pytest.fixture
def credential() -> Credential:
    return Credential(id="cred-1", provider="openai", api_key="sk-test", scopes=("automation",))


@pytest.fixture
def pipeline_ctx(model_profile, credential, make_question) -> PipelineContext:
    """Pipeline context with a single independent question."""
    return PipelineContext(
        run_id=RUN_ID,
        run={"id": RUN_ID, "notes": None, "stop_requested": False},
        plan=resolve_stage3_plan(None),
        model=model_profile,
        credential=credential,
        prompts=PromptLibrary(),
        questions=[make_question("pricing-power")],
    )


@pytest.fixture
def ticker_ctx() -> TickerContext:
    return TickerContext(ticker="AAPL", meta={"name": "Apple Inc.", "sector": "Technology"})


def chat_response(
    payload: dict[str, Any] | str,
    prompt_tokens: int = 1000,
    completion_tokens: int = 250,
) -> dict[str, Any]:
    """Chat completion payload as returned by the provider client."""
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return {
        "id": "chatcmpl-test",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


@pytest.fixture
def make_chat_response() -> Callable[..., dict[str, Any]]:
    return chat_response
