"""
Question evaluation.

Each question is rendered against the ticker context and the digest of the
answers it depends on, sent through the completion cache, then parsed and
validated. Invalid output is logged to ``error_logs`` and raised as
``AnswerValidationError``; the pipeline treats that as a failure of the
current ticker only.
"""

from __future__ import annotations

from typing import Any, Callable

from deepdive.core.exceptions import AnswerValidationError
from deepdive.core.logging import get_logger
from deepdive.services.ai import (
    CompletionResult,
    ValidationResult,
    apply_request_settings,
    cached_chat_completion,
    parse_json_payload,
    validate_stage3_question,
)
from deepdive.services.observability import log_error

from .context import PipelineContext, TickerContext
from .ensemble import clamp_score
from .formatting import (
    format_answer_schema,
    format_dependency_digest,
    format_stage1_summary,
    format_stage2_summary,
    format_ticker_profile,
)
from .models import QuestionDefinition, QuestionOutcome, Verdict


logger = get_logger("deep_dive.evaluator")

MAX_TAGS = 12

_EXACT_VERDICTS: dict[str, Verdict] = {
    "bad": "bad",
    "neutral": "neutral",
    "good": "good",
    "mixed": "neutral",
    "hold": "neutral",
}
_BAD_KEYWORDS = ("bad", "negative", "bear", "weak", "poor", "unfavorable", "sell", "avoid")
_GOOD_KEYWORDS = ("good", "positive", "bull", "strong", "favorable", "buy", "attractive")


def normalize_verdict(value: Any) -> Verdict:
    """
    Map a free-form verdict to bad/neutral/good.

    Exact labels win, then bearish keywords, then bullish ones. Anything
    else is neutral.

    Example:
        >>> normalize_verdict("Strongly bullish")
        'good'
        >>> normalize_verdict("unfavorable")
        'bad'
    """
    text = str(value or "").strip().lower()
    if not text:
        return "neutral"
    if text in _EXACT_VERDICTS:
        return _EXACT_VERDICTS[text]
    # "unfavorable" contains "favorable", so bearish words are checked first
    if any(word in text for word in _BAD_KEYWORDS):
        return "bad"
    if any(word in text for word in _GOOD_KEYWORDS):
        return "good"
    return "neutral"


def _extract_tags(payload: dict[str, Any]) -> list[str]:
    tags: list[str] = []
    raw = payload.get("tags")
    if not isinstance(raw, list):
        return tags
    for tag in raw:
        if isinstance(tag, str) and tag.strip() and tag.strip() not in tags:
            tags.append(tag.strip())
    return tags[:MAX_TAGS]


def _extract_summary(payload: dict[str, Any]) -> str:
    for key in ("summary", "rationale", "explanation"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def resolve_citations(payload: dict[str, Any], tctx: TickerContext) -> list[dict[str, Any]]:
    """Map excerpt labels cited by the model to retrieval citations."""
    raw = payload.get("citations")
    if raw is None:
        raw = payload.get("sources")
    if not isinstance(raw, list):
        return []
    by_ref = {c["ref"].upper(): c for c in tctx.retrieval.citations}
    resolved: list[dict[str, Any]] = []
    for entry in raw:
        ref = entry.get("ref") if isinstance(entry, dict) else entry
        citation = by_ref.get(str(ref or "").strip().strip("[]").upper())
        if citation is not None and citation not in resolved:
            resolved.append(citation)
    return resolved


async def request_validated_json(
    ctx: PipelineContext,
    tctx: TickerContext,
    *,
    system: str,
    user: str,
    key_parts: list[str],
    validator: Callable[[Any], ValidationResult],
    error_context: str,
    prompt_id: str,
) -> tuple[dict[str, Any], CompletionResult]:
    """
    Run one JSON-mode completion through the cache and validate the result.

    Only responses that pass ``validator`` are stored in the cache, so a bad
    answer is requested fresh next time.

    Raises:
        AnswerValidationError: The response is not JSON or fails validation
    """
    body = apply_request_settings(
        {
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
        },
        ctx.plan.request,
    )

    def passes(text: str) -> bool:
        try:
            return validator(parse_json_payload(text)).valid
        except ValueError:
            return False

    result = await cached_chat_completion(
        model=ctx.model,
        credential=ctx.credential,
        body=body,
        key_parts=key_parts,
        retry=ctx.plan.retry,
        scope="stage3",
        context={"run_id": ctx.run_id, "ticker": tctx.ticker, "prompt": prompt_id},
        should_store=passes,
    )
    tctx.record_call(result.usage.cost_usd, result.cache_hit)

    try:
        payload = parse_json_payload(result.content)
    except ValueError as e:
        errors = [str(e)]
    else:
        validation = validator(payload)
        if validation.valid:
            return payload, result
        errors = validation.errors

    message = f"Invalid model output for {prompt_id}: {'; '.join(errors)}"
    await log_error(
        error_context,
        message,
        run_id=ctx.run_id,
        ticker=tctx.ticker,
        stage=ctx.stage,
        prompt_id=prompt_id,
        payload={"raw": result.content},
        metadata={"errors": errors, "model": ctx.model.slug, "cache_key": result.cache_key},
    )
    raise AnswerValidationError(message, errors=errors, raw_text=result.content)


def build_question_prompts(
    ctx: PipelineContext, tctx: TickerContext, question: QuestionDefinition
) -> tuple[str, str]:
    tokens = {
        "ticker": tctx.ticker,
        "company": tctx.company,
        "dimension_name": question.dimension.name,
        "ticker_profile": format_ticker_profile(tctx.ticker, tctx.meta),
        "stage1_summary": format_stage1_summary(tctx.stage1),
        "stage2_summary": format_stage2_summary(tctx.stage2),
        "retrieval_block": tctx.retrieval.text,
        "dependency_digest": format_dependency_digest(question, tctx.outcomes),
        "question_slug": question.slug,
        "question_title": question.title or question.slug,
        "question_prompt": question.prompt,
        "question_guidance": question.guidance or "None.",
        "answer_schema": format_answer_schema(question),
    }
    system = ctx.prompts.render("stage3-question-system", tokens)
    user = ctx.prompts.render("stage3-question-user", tokens)
    return system, user


async def evaluate_question(
    ctx: PipelineContext, tctx: TickerContext, question: QuestionDefinition
) -> QuestionOutcome:
    """
    Answer one question for one ticker.

    The outcome is also recorded in ``tctx.outcomes`` so later questions
    can reference it in their dependency digest.
    """
    system, user = build_question_prompts(ctx, tctx, question)
    schema = question.answer_schema

    payload, result = await request_validated_json(
        ctx,
        tctx,
        system=system,
        user=user,
        key_parts=["stage3", tctx.ticker, f"question-{question.slug}"],
        validator=lambda data: validate_stage3_question(data, schema),
        error_context="stage3.question",
        prompt_id=question.slug,
    )

    raw_score = payload.get("score")
    if raw_score is None:
        raw_score = payload.get("numeric_score")

    outcome = QuestionOutcome(
        question=question,
        verdict=normalize_verdict(
            payload.get("verdict") or payload.get("rating") or payload.get("outlook")
        ),
        score=clamp_score(raw_score),
        summary=_extract_summary(payload),
        tags=_extract_tags(payload),
        answer=payload,
        citations=resolve_citations(payload, tctx),
        tokens_in=result.usage.prompt_tokens,
        tokens_out=result.usage.completion_tokens,
        cost_usd=result.usage.cost_usd,
        cache_hit=result.cache_hit,
        retrieval=tctx.retrieval.citations,
    )
    tctx.outcomes[question.slug] = outcome

    logger.debug(
        "Question answered",
        extra={
            "ticker": tctx.ticker,
            "question": question.slug,
            "verdict": outcome.verdict,
            "cache_hit": outcome.cache_hit,
        },
    )
    return outcome
