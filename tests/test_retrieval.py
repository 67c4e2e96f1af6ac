"""Tests for retrieval-augmented context."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from deepdive.core.exceptions import ConfigurationError, UpstreamError
from deepdive.services.ai import (
    EMPTY_RETRIEVAL,
    EMPTY_RETRIEVAL_TEXT,
    build_retrieval_query,
    fetch_retrieval_context,
)


MODULE = "deepdive.services.ai.retrieval"


@pytest.fixture
def embedding_stack(mocker, model_profile, credential):
    """Patch model resolution, embedding and vector search."""
    return {
        "model": mocker.patch(f"{MODULE}.resolve_model", new_callable=AsyncMock, return_value=model_profile),
        "credential": mocker.patch(
            f"{MODULE}.resolve_credential", new_callable=AsyncMock, return_value=credential
        ),
        "embed": mocker.patch(
            f"{MODULE}.create_embedding",
            new_callable=AsyncMock,
            return_value=([0.1, 0.2, 0.3], {"prompt_tokens": 42, "total_tokens": 42}),
        ),
        "match": mocker.patch(
            f"{MODULE}.documents_orm.match_doc_chunks",
            new_callable=AsyncMock,
            return_value=[
                {
                    "chunk": "  Services revenue grew 14% year over year.  ",
                    "title": "FY2025 10-K",
                    "source_type": "filing",
                    "published_at": datetime(2025, 11, 1),
                    "source_url": "https://example.com/10k",
                    "similarity": 0.91,
                    "token_length": 12,
                },
                {"chunk": "App Store fee pressure.", "source": "news", "similarity": 0.77},
            ],
        ),
    }


class TestBuildRetrievalQuery:
    """Tests for build_retrieval_query."""

    def test_includes_facts_and_prior_answers(self):
        query = build_retrieval_query(
            "AAPL",
            {"name": "Apple Inc.", "sector": "Technology"},
            {"summary": "Quality compounder", "reasons": ["Brand", "Ecosystem", "Buybacks", "Extra"]},
            {"verdict": {"summary": "Worth a deep dive"}, "next_steps": ["Check services mix"]},
        )

        assert query.splitlines()[0] == "Ticker: AAPL"
        assert "Name: Apple Inc." in query
        assert "Stage 1 reasons: Brand; Ecosystem; Buybacks" in query
        assert "Stage 2 verdict: Worth a deep dive" in query
        assert "Stage 2 next steps: Check services mix" in query

    def test_minimal_query(self):
        assert build_retrieval_query("MSFT", None, None, None) == "Ticker: MSFT"


class TestFetchRetrievalContext:
    """Tests for fetch_retrieval_context."""

    @pytest.mark.asyncio
    async def test_returns_labelled_snippets(self, embedding_stack):
        context = await fetch_retrieval_context(
            "AAPL", "Ticker: AAPL", embedding_model="text-embedding-3-small", match_limit=5
        )

        assert context.hits == 2
        assert context.embedding_tokens == 42
        assert [s.ref for s in context.snippets] == ["D1", "D2"]
        assert context.snippets[0].chunk == "Services revenue grew 14% year over year."
        assert context.snippets[0].published_at == "2025-11-01T00:00:00"
        assert context.snippets[1].source_type == "news"
        assert context.text.startswith("[D1] Services revenue")
        assert context.citations[0]["title"] == "FY2025 10-K"
        embedding_stack["match"].assert_awaited_once_with([0.1, 0.2, 0.3], "AAPL", 5)

    @pytest.mark.asyncio
    async def test_match_limit_is_capped(self, embedding_stack):
        await fetch_retrieval_context("AAPL", "q", embedding_model="emb", match_limit=500)
        assert embedding_stack["match"].await_args.args[2] == 20

    @pytest.mark.asyncio
    async def test_no_embedding_model_degrades(self, embedding_stack):
        context = await fetch_retrieval_context("AAPL", "q", embedding_model=None)

        assert context is EMPTY_RETRIEVAL
        assert context.hits == 0
        assert context.text == EMPTY_RETRIEVAL_TEXT
        embedding_stack["embed"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_credential_degrades(self, embedding_stack):
        embedding_stack["credential"].side_effect = ConfigurationError("No credential configured")

        context = await fetch_retrieval_context("AAPL", "q", embedding_model="emb")

        assert context.hits == 0
        assert context.embedding_tokens == 0
        assert context.text == "No external excerpts supplied."

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades(self, embedding_stack):
        embedding_stack["embed"].side_effect = UpstreamError("Embedding failed")

        context = await fetch_retrieval_context("AAPL", "q", embedding_model="emb")

        assert context is EMPTY_RETRIEVAL

    @pytest.mark.asyncio
    async def test_empty_vector_degrades(self, embedding_stack):
        embedding_stack["embed"].return_value = (None, {})

        context = await fetch_retrieval_context("AAPL", "q", embedding_model="emb")

        assert context is EMPTY_RETRIEVAL
        embedding_stack["match"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_search_failure_degrades(self, embedding_stack):
        embedding_stack["match"].side_effect = OperationalError("SELECT", {}, Exception("no vector"))

        context = await fetch_retrieval_context("AAPL", "q", embedding_model="emb")

        assert context is EMPTY_RETRIEVAL
