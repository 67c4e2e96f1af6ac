"""Tests for per-stage model plans, request settings and prompt templates."""

from __future__ import annotations

import json

import pytest

from deepdive.services.ai import (
    PromptLibrary,
    RequestSettings,
    apply_request_settings,
    normalize_template,
    render_template,
    resolve_cache_ttl_minutes,
    resolve_stage3_plan,
)


class TestResolveStage3Plan:
    """Tests for resolve_stage3_plan."""

    def test_defaults_from_settings(self, test_settings):
        plan = resolve_stage3_plan(None)

        assert plan.model_slug == test_settings.stage3_model
        assert plan.fallback_slug == test_settings.stage3_fallback_model
        assert plan.credential_id is None
        assert plan.retry.attempts == test_settings.stage3_retry_attempts

    def test_run_notes_override(self):
        notes = {
            "planner": {
                "stage3": {
                    "model": "claude-deep",
                    "fallback": "gpt-4o-mini",
                    "credentialId": "cred-9",
                    "request": {"temperature": 0.7, "stop_sequences": ["END"]},
                    "retry": {"attempts": 5, "backoff_ms": 10},
                }
            }
        }

        plan = resolve_stage3_plan(notes)

        assert plan.model_slug == "claude-deep"
        assert plan.credential_id == "cred-9"
        assert plan.request.temperature == 0.7
        assert plan.request.stop_sequences == ("END",)
        assert plan.retry.attempts == 5
        assert plan.retry.backoff_ms == 10

    def test_notes_as_json_string(self):
        notes = json.dumps({"planner": {"stage3": {"model": "from-string"}}})
        assert resolve_stage3_plan(notes).model_slug == "from-string"

    def test_invalid_notes_fall_back(self, test_settings):
        assert resolve_stage3_plan("{not json").model_slug == test_settings.stage3_model


class TestApplyRequestSettings:
    """Tests for apply_request_settings."""

    def test_applies_numeric_stop_and_cache(self):
        request = RequestSettings(
            temperature=0.3,
            max_tokens=800,
            stop_sequences=("###",),
            metadata={"stage": "3"},
            cache={"ttl": 60},
        )

        body = apply_request_settings({"messages": [], "metadata": {"run": "r1"}}, request)

        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 800
        assert body["stop"] == ["###"]
        assert body["metadata"] == {"run": "r1", "stage": "3"}
        assert body["extra_body"] == {"cache": {"ttl": 60}}

    def test_none_request_returns_body(self):
        body = {"messages": []}
        assert apply_request_settings(body, None) is body

    def test_unset_values_are_omitted(self):
        body = apply_request_settings({"messages": []}, RequestSettings())
        assert body == {"messages": []}


class TestCacheTtl:
    """Tests for resolve_cache_ttl_minutes."""

    def test_scope_env_wins(self, monkeypatch):
        monkeypatch.setenv("STAGE3_CACHE_TTL_MINUTES", "15")
        monkeypatch.setenv("AI_CACHE_TTL_MINUTES", "99")
        assert resolve_cache_ttl_minutes("stage3") == 15

    def test_global_env_next(self, monkeypatch):
        monkeypatch.setenv("AI_CACHE_TTL_MINUTES", "99")
        assert resolve_cache_ttl_minutes("stage3") == 99

    def test_non_positive_values_are_ignored(self, monkeypatch, test_settings):
        monkeypatch.setenv("STAGE3_CACHE_TTL_MINUTES", "0")
        monkeypatch.setenv("AI_CACHE_TTL_MINUTES", "abc")
        assert resolve_cache_ttl_minutes("stage3") == test_settings.ai_cache_ttl_minutes

    def test_explicit_fallback(self):
        assert resolve_cache_ttl_minutes("stage3", fallback=5) == 5


class TestTemplates:
    """Tests for template rendering and the prompt library."""

    def test_render_tokens(self):
        assert render_template("Hi {{ name }} ({{ticker}})", {"name": "Ada", "ticker": "AAPL"}) == (
            "Hi Ada (AAPL)"
        )

    def test_missing_tokens_render_empty(self):
        assert render_template("[{{ missing }}]", {}) == "[]"

    def test_lists_are_joined(self):
        assert render_template("{{ items }}", {"items": ["a", "b"]}) == "ab"

    def test_normalize_template(self):
        assert normalize_template("\r\n\r\nline one\r\nline two\r\n\r\n") == "line one\nline two"

    def test_default_templates_render(self):
        library = PromptLibrary()
        text = library.render("stage3-question-user", {"ticker": "AAPL", "question_slug": "moat"})
        assert "AAPL" in text
        assert "{{" not in text

    def test_directory_override(self, tmp_path):
        (tmp_path / "stage3-summary-system.md").write_text("Custom for {{ ticker }}\n", encoding="utf-8")
        library = PromptLibrary(tmp_path)

        assert library.render("stage3-summary-system", {"ticker": "MSFT"}) == "Custom for MSFT"
        # Keys without an override use the built-in template
        assert library.get("stage3-summary-user")

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            PromptLibrary().get("stage9-nothing")
