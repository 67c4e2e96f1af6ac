"""Tests for question evaluation and the summary memo."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from deepdive.core.exceptions import AnswerValidationError
from deepdive.services.ai import RetrievalContext
from deepdive.services.ai.retrieval import RetrievedSnippet
from deepdive.services.deep_dive import compose_summary, evaluate_question, normalize_verdict
from deepdive.services.deep_dive.evaluator import build_question_prompts, resolve_citations


@pytest.fixture
def completion(mocker, make_chat_response):
    """Patch the cache-fronted completion used by the evaluator."""
    from deepdive.services.ai import CompletionResult, UsageMetrics

    def _result(payload, cache_hit=False, cost=0.002):
        response = make_chat_response(payload)
        return CompletionResult(
            content=response["choices"][0]["message"]["content"],
            usage=UsageMetrics(prompt_tokens=1000, completion_tokens=250, cost_usd=0.0 if cache_hit else cost),
            cache_hit=cache_hit,
            cache_key="stage3:aapl:question-pricing-power:abc",
            prompt_hash="abc",
            model_slug="gpt-5-mini",
            response=response,
        )

    mock = mocker.patch(
        "deepdive.services.deep_dive.evaluator.cached_chat_completion",
        new_callable=AsyncMock,
    )
    mock.make = _result
    return mock


@pytest.fixture
def log_error(mocker):
    return mocker.patch("deepdive.services.deep_dive.evaluator.log_error", new_callable=AsyncMock)


@pytest.fixture
def retrieval() -> RetrievalContext:
    return RetrievalContext(
        snippets=[
            RetrievedSnippet(ref="D1", chunk="Services revenue grew 14%.", title="10-K", source_type="filing"),
            RetrievedSnippet(ref="D2", chunk="App Store fee pressure.", title="News", source_type="news"),
        ],
        embedding_tokens=40,
    )


class TestNormalizeVerdict:
    """Tests for normalize_verdict."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("good", "good"),
            ("BAD", "bad"),
            ("mixed", "neutral"),
            ("hold", "neutral"),
            ("Strongly bullish", "good"),
            ("positive outlook", "good"),
            ("unfavorable", "bad"),
            ("Bearish", "bad"),
            ("weak moat", "bad"),
            ("uncertain", "neutral"),
            ("", "neutral"),
            (None, "neutral"),
        ],
    )
    def test_mapping(self, raw, expected):
        assert normalize_verdict(raw) == expected


class TestResolveCitations:
    """Tests for resolve_citations."""

    def test_maps_refs_to_retrieval_citations(self, ticker_ctx, retrieval):
        ticker_ctx.retrieval = retrieval
        citations = resolve_citations({"citations": ["[d2]", {"ref": "D1"}, "D9", "D2"]}, ticker_ctx)
        assert [c["ref"] for c in citations] == ["D2", "D1"]

    def test_sources_alias(self, ticker_ctx, retrieval):
        ticker_ctx.retrieval = retrieval
        assert resolve_citations({"sources": ["D1"]}, ticker_ctx)[0]["title"] == "10-K"

    def test_no_citations(self, ticker_ctx):
        assert resolve_citations({}, ticker_ctx) == []


class TestBuildQuestionPrompts:
    """Tests for build_question_prompts."""

    def test_prompts_include_question_and_context(self, pipeline_ctx, ticker_ctx, retrieval):
        ticker_ctx.retrieval = retrieval
        question = pipeline_ctx.questions[0]

        system, user = build_question_prompts(pipeline_ctx, ticker_ctx, question)

        assert system
        assert "AAPL" in user
        assert "Apple Inc." in user
        assert question.prompt in user
        assert "[D1] Services revenue grew 14%." in user

    def test_empty_retrieval_placeholder(self, pipeline_ctx, ticker_ctx):
        _, user = build_question_prompts(pipeline_ctx, ticker_ctx, pipeline_ctx.questions[0])
        assert "No external excerpts supplied." in user


class TestEvaluateQuestion:
    """Tests for evaluate_question."""

    @pytest.mark.asyncio
    async def test_valid_answer_becomes_outcome(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make({
            "verdict": "Bullish",
            "score": 82.5,
            "summary": "Pricing power intact.",
            "tags": ["pricing", "pricing", " brand "],
        })
        question = pipeline_ctx.questions[0]

        outcome = await evaluate_question(pipeline_ctx, ticker_ctx, question)

        assert outcome.verdict == "good"
        assert outcome.score == 82.5
        assert outcome.summary == "Pricing power intact."
        assert outcome.tags == ["pricing", "brand"]
        assert outcome.cost_usd == pytest.approx(0.002)
        assert ticker_ctx.outcomes[question.slug] is outcome
        assert ticker_ctx.spend == pytest.approx(0.002)
        assert ticker_ctx.model_calls == 1
        log_error.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_request_uses_question_cache_key(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make({"verdict": "good"})

        await evaluate_question(pipeline_ctx, ticker_ctx, pipeline_ctx.questions[0])

        kwargs = completion.await_args.kwargs
        assert kwargs["key_parts"] == ["stage3", "AAPL", "question-pricing-power"]
        assert kwargs["body"]["response_format"] == {"type": "json_object"}
        assert kwargs["should_store"]('{"verdict": "good"}') is True
        assert kwargs["should_store"]("not json") is False

    @pytest.mark.asyncio
    async def test_numeric_score_and_rationale_fallbacks(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make({
            "rating": "neutral",
            "numeric_score": 55,
            "rationale": "Balanced.",
        })

        outcome = await evaluate_question(pipeline_ctx, ticker_ctx, pipeline_ctx.questions[0])

        assert outcome.score == 55.0
        assert outcome.summary == "Balanced."

    @pytest.mark.asyncio
    async def test_cache_hit_is_free(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make({"verdict": "good"}, cache_hit=True)

        outcome = await evaluate_question(pipeline_ctx, ticker_ctx, pipeline_ctx.questions[0])

        assert outcome.cache_hit is True
        assert outcome.cost_usd == 0.0
        assert ticker_ctx.spend == 0.0
        assert ticker_ctx.cache_hits == 1

    @pytest.mark.asyncio
    async def test_invalid_json_raises_and_logs(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make("I think it's good")

        with pytest.raises(AnswerValidationError) as exc_info:
            await evaluate_question(pipeline_ctx, ticker_ctx, pipeline_ctx.questions[0])

        assert exc_info.value.raw_text == "I think it's good"
        log_error.assert_awaited_once()
        args, kwargs = log_error.await_args
        assert args[0] == "stage3.question"
        assert kwargs["prompt_id"] == "pricing-power"
        assert kwargs["payload"] == {"raw": "I think it's good"}
        assert ticker_ctx.outcomes == {}

    @pytest.mark.asyncio
    async def test_schema_violation_raises(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make({"summary": "No verdict here."})

        with pytest.raises(AnswerValidationError) as exc_info:
            await evaluate_question(pipeline_ctx, ticker_ctx, pipeline_ctx.questions[0])

        assert exc_info.value.errors


class TestComposeSummary:
    """Tests for compose_summary."""

    @pytest.mark.asyncio
    async def test_memo_carries_citations(self, pipeline_ctx, ticker_ctx, completion, log_error, retrieval):
        ticker_ctx.retrieval = retrieval
        completion.return_value = completion.make({
            "verdict": "Buy",
            "conviction": "High",
            "thesis": "Durable ecosystem with pricing power.",
        })

        summary = await compose_summary(pipeline_ctx, ticker_ctx)

        assert summary.verdict == "Buy"
        assert summary.thesis == "Durable ecosystem with pricing power."
        assert summary.headline == summary.thesis
        assert [c["ref"] for c in summary.payload["citations"]] == ["D1", "D2"]
        assert completion.await_args.kwargs["key_parts"] == ["stage3", "AAPL", "summary"]

    @pytest.mark.asyncio
    async def test_headline_falls_back_to_summary(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make({"summary": "Fairly valued.", "rating": "Hold"})

        summary = await compose_summary(pipeline_ctx, ticker_ctx)

        assert summary.thesis is None
        assert summary.headline == "Fairly valued."
        assert summary.verdict == "Hold"

    @pytest.mark.asyncio
    async def test_memo_without_thesis_raises(self, pipeline_ctx, ticker_ctx, completion, log_error):
        completion.return_value = completion.make({"verdict": "Buy"})

        with pytest.raises(AnswerValidationError):
            await compose_summary(pipeline_ctx, ticker_ctx)

        assert log_error.await_args.args[0] == "stage3.summary"
