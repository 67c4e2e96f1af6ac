"""Tests for the content-addressed completion cache."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from deepdive.services.ai import RetrySettings, cached_chat_completion, hash_request_body
from deepdive.services.ai.completion_cache import extract_message_content


BODY = {
    "messages": [
        {"role": "system", "content": "You are an analyst."},
        {"role": "user", "content": "Assess AAPL."},
    ],
    "temperature": 0.2,
}


@pytest.fixture
def cache_repo(mocker):
    """Patch the completions repository used by the cache."""
    repo = "deepdive.services.ai.completion_cache.completions_orm"
    return {
        "get": mocker.patch(f"{repo}.get_cached_completion", new_callable=AsyncMock, return_value=None),
        "delete": mocker.patch(f"{repo}.delete_cached_completion", new_callable=AsyncMock),
        "hit": mocker.patch(f"{repo}.mark_cache_hit", new_callable=AsyncMock),
        "upsert": mocker.patch(f"{repo}.upsert_cached_completion", new_callable=AsyncMock),
    }


@pytest.fixture
def provider(mocker, make_chat_response):
    return mocker.patch(
        "deepdive.services.ai.completion_cache.chat_completion",
        new_callable=AsyncMock,
        return_value=make_chat_response({"verdict": "good"}, 1000, 250),
    )


async def _call(model_profile, credential, **kwargs):
    return await cached_chat_completion(
        model=model_profile,
        credential=credential,
        body=BODY,
        key_parts=["stage3", "AAPL", "question-moat"],
        retry=RetrySettings(),
        **kwargs,
    )


class TestCacheMiss:
    """Misses call the provider and store the response."""

    @pytest.mark.asyncio
    async def test_miss_calls_provider_and_stores(self, model_profile, credential, cache_repo, provider):
        result = await _call(model_profile, credential)

        assert result.cache_hit is False
        assert result.content == '{"verdict": "good"}'
        provider.assert_awaited_once()
        cache_repo["upsert"].assert_awaited_once()
        stored = cache_repo["upsert"].await_args.kwargs
        assert stored["model_slug"] == "gpt-5-mini"
        assert stored["cache_key"] == result.cache_key
        assert stored["request_body"]["model"] == "gpt-5-mini"

    @pytest.mark.asyncio
    async def test_miss_is_priced_from_usage(self, model_profile, credential, cache_repo, provider):
        result = await _call(model_profile, credential)

        # 1000 in at $1/M + 250 out at $4/M
        assert result.usage.prompt_tokens == 1000
        assert result.usage.completion_tokens == 250
        assert result.usage.cost_usd == pytest.approx(0.002)

    @pytest.mark.asyncio
    async def test_cache_key_ends_with_request_hash(self, model_profile, credential, cache_repo, provider):
        result = await _call(model_profile, credential)

        expected_hash = hash_request_body({**BODY, "model": "gpt-5-mini"})
        assert result.prompt_hash == expected_hash
        assert result.cache_key == f"stage3:aapl:question-moat:{expected_hash}"

    @pytest.mark.asyncio
    async def test_rejected_response_is_not_stored(self, model_profile, credential, cache_repo, provider):
        result = await _call(model_profile, credential, should_store=lambda text: False)

        assert result.cache_hit is False
        cache_repo["upsert"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ttl_comes_from_scope_env(
        self, model_profile, credential, cache_repo, provider, monkeypatch
    ):
        monkeypatch.setenv("STAGE3_CACHE_TTL_MINUTES", "30")
        before = datetime.now(UTC)

        await _call(model_profile, credential, scope="stage3")

        expires_at = cache_repo["upsert"].await_args.kwargs["expires_at"]
        assert before + timedelta(minutes=29) < expires_at <= datetime.now(UTC) + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_lookup_failure_proceeds_uncached(self, model_profile, credential, cache_repo, provider):
        cache_repo["get"].side_effect = OperationalError("SELECT", {}, Exception("down"))

        result = await _call(model_profile, credential)

        assert result.cache_hit is False
        provider.assert_awaited_once()


class TestCacheHit:
    """Hits are free and never reach the provider."""

    @pytest.fixture
    def cached_row(self, make_chat_response):
        return {
            "id": 42,
            "response_body": make_chat_response({"verdict": "bad"}),
            "usage": {"prompt_tokens": 1000, "completion_tokens": 250},
            "expires_at": datetime.now(UTC) + timedelta(hours=1),
            "hit_count": 3,
        }

    @pytest.mark.asyncio
    async def test_hit_returns_stored_content_at_zero_cost(
        self, model_profile, credential, cache_repo, provider, cached_row
    ):
        cache_repo["get"].return_value = cached_row

        result = await _call(model_profile, credential)

        assert result.cache_hit is True
        assert result.content == '{"verdict": "bad"}'
        assert result.usage.cost_usd == 0.0
        assert result.usage.prompt_tokens == 1000
        provider.assert_not_awaited()
        cache_repo["upsert"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hit_increments_hit_count(
        self, model_profile, credential, cache_repo, provider, cached_row
    ):
        cache_repo["get"].return_value = cached_row

        await _call(model_profile, credential)

        cache_repo["hit"].assert_awaited_once_with(42)

    @pytest.mark.asyncio
    async def test_expired_row_is_evicted_and_refetched(
        self, model_profile, credential, cache_repo, provider, cached_row
    ):
        cached_row["expires_at"] = datetime.now(UTC) - timedelta(minutes=1)
        cache_repo["get"].return_value = cached_row

        result = await _call(model_profile, credential)

        assert result.cache_hit is False
        cache_repo["delete"].assert_awaited_once_with(42)
        provider.assert_awaited_once()


class TestExtractMessageContent:
    """Tests for extract_message_content."""

    def test_plain_string_content(self, make_chat_response):
        assert extract_message_content(make_chat_response("hello")) == "hello"

    def test_content_parts_are_joined(self):
        response = {
            "choices": [
                {"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}
            ]
        }
        assert extract_message_content(response) == "ab"

    def test_no_choices(self):
        assert extract_message_content({}) == ""


class TestMarkCacheHit:
    """Tests for the cache-hit counter update."""

    @pytest.mark.asyncio
    async def test_increments_in_sql(self, mocker):
        """The counter is bumped relative to the stored value, not a value read earlier."""
        from contextlib import asynccontextmanager

        from sqlalchemy.dialects import postgresql

        from deepdive.repositories import completions_orm

        session = mocker.MagicMock()
        session.execute = AsyncMock()
        session.commit = AsyncMock()

        @asynccontextmanager
        async def fake_session():
            yield session

        mocker.patch.object(completions_orm, "get_session", fake_session)

        await completions_orm.mark_cache_hit(42)

        stmt = session.execute.await_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "hit_count + " in sql
        assert "last_hit_at" in sql
        session.commit.assert_awaited_once()
