"""
Stage 3 deep-dive batch.

One call processes up to ``limit`` finalists of a run sequentially:

1. Claim the run item (``ok`` -> ``in_progress``); unclaimed items are skipped
2. Load ticker metadata and Stage 1/2 answers concurrently
3. Retrieve document excerpts (degrades to none)
4. Answer every registry question in dependency order
5. Blend question scores with factor snapshots per dimension
6. Compose the final memo
7. Advance the item to stage 3 and dispatch conviction alerts

A failure inside steps 2-7 marks only that ticker failed; configuration
problems abort the batch.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from deepdive.cache import run_lock
from deepdive.core.config import settings
from deepdive.core.exceptions import (
    AnswerValidationError,
    AppException,
    BadRequestError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    RegistryError,
)
from deepdive.core.logging import get_logger
from deepdive.repositories import (
    answers_orm,
    cost_ledger_orm,
    registry_orm,
    runs_orm,
)
from deepdive.services.ai import (
    PromptLibrary,
    build_retrieval_query,
    fetch_retrieval_context,
    resolve_credential,
    resolve_model,
    resolve_stage3_plan,
)
from deepdive.services.notifications import dispatch_stage3_notifications
from deepdive.services.observability import log_error

from .context import PipelineContext, TickerContext
from .ensemble import build_ensembles
from .evaluator import evaluate_question
from .graph import order_questions
from .models import QuestionDefinition, QuestionOutcome
from .summary import SummaryOutcome, compose_summary


logger = get_logger("deep_dive.pipeline")

STAGE = 3


def clamp_limit(limit: Any) -> int:
    """Batch size clamped to the configured bounds."""
    if limit is None or isinstance(limit, bool):
        return settings.stage3_batch_default
    try:
        value = float(limit)
    except (TypeError, ValueError):
        return settings.stage3_batch_default
    if not math.isfinite(value):
        return settings.stage3_batch_default
    return max(1, min(int(value), settings.stage3_batch_max))


def _validate_run_id(run_id: Any) -> str:
    try:
        return str(uuid.UUID(str(run_id)))
    except (TypeError, ValueError, AttributeError):
        raise BadRequestError("Invalid run_id", details={"run_id": run_id}) from None


async def collect_metrics(run_id: str) -> dict[str, Any]:
    """Stage 3 counters plus the stage's spend from the cost breakdown."""
    metrics: dict[str, Any] = dict(await runs_orm.get_stage3_metrics(run_id))
    try:
        metrics["spend"] = await runs_orm.get_stage_spend(run_id, STAGE)
    except SQLAlchemyError as e:
        logger.error(f"Failed to compute Stage 3 spend: {e}", extra={"run_id": run_id})
        metrics["spend"] = 0.0
    return metrics


# =============================================================================
# CONTEXT
# =============================================================================


async def build_pipeline_context(run_id: str, run: dict[str, Any]) -> PipelineContext:
    """
    Resolve model, credential and the ordered question registry for a batch.

    Raises:
        ConfigurationError: Model or credential cannot be resolved
        RegistryError: No active questions, or the dependency graph is invalid
    """
    plan = resolve_stage3_plan(run.get("notes"))
    model = await resolve_model(plan.model_slug, plan.fallback_slug)
    credential = await resolve_credential(model.provider, credential_id=plan.credential_id)

    rows = await registry_orm.list_stage_questions(STAGE)
    if not rows:
        raise RegistryError("No active Stage 3 questions configured")
    questions = order_questions([QuestionDefinition.from_row(row) for row in rows])
    factor_links = await registry_orm.load_dimension_factor_links()

    return PipelineContext(
        run_id=run_id,
        run=run,
        plan=plan,
        model=model,
        credential=credential,
        prompts=PromptLibrary(settings.prompt_template_dir or None),
        questions=questions,
        factor_links=factor_links,
    )


# =============================================================================
# PERSISTENCE
# =============================================================================


async def _record_cost(
    ctx: PipelineContext,
    ticker: str,
    tokens_in: int,
    tokens_out: int,
    cost_usd: float,
    cache_hit: bool,
) -> None:
    if cache_hit or cost_usd <= 0:
        return
    await cost_ledger_orm.record_cost(
        run_id=ctx.run_id,
        stage=STAGE,
        model=ctx.model.slug,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        cost_usd=cost_usd,
        ticker=ticker,
    )


async def persist_question_outcome(
    ctx: PipelineContext, tctx: TickerContext, outcome: QuestionOutcome
) -> None:
    """Append the answer row, charge the ledger and upsert the outcome."""
    question = outcome.question
    await answers_orm.insert_answer(
        run_id=ctx.run_id,
        ticker=tctx.ticker,
        stage=STAGE,
        question_group=question.slug,
        answer_json={
            "question": question.slug,
            "dimension": question.dimension.slug,
            "verdict": outcome.verdict,
            "score": outcome.score,
            "summary": outcome.summary,
            "tags": outcome.tags,
            "citations": outcome.citations,
            "retrieval": outcome.retrieval,
            "cache_hit": outcome.cache_hit,
            "model": ctx.model.slug,
            "answer": outcome.answer,
        },
        answer_text=outcome.summary or None,
        tokens_in=outcome.tokens_in,
        tokens_out=outcome.tokens_out,
        cost_usd=outcome.cost_usd,
    )
    await _record_cost(
        ctx, tctx.ticker, outcome.tokens_in, outcome.tokens_out, outcome.cost_usd, outcome.cache_hit
    )
    await answers_orm.upsert_question_result(ctx.run_id, tctx.ticker, outcome.to_record())


async def persist_summary(ctx: PipelineContext, tctx: TickerContext, summary: SummaryOutcome) -> None:
    await answers_orm.insert_answer(
        run_id=ctx.run_id,
        ticker=tctx.ticker,
        stage=STAGE,
        question_group="summary",
        answer_json=summary.payload,
        answer_text=summary.thesis,
        tokens_in=summary.tokens_in,
        tokens_out=summary.tokens_out,
        cost_usd=summary.cost_usd,
    )
    await _record_cost(
        ctx, tctx.ticker, summary.tokens_in, summary.tokens_out, summary.cost_usd, summary.cache_hit
    )


# =============================================================================
# PER-TICKER FLOW
# =============================================================================


async def _load_ticker_inputs(ctx: PipelineContext, tctx: TickerContext) -> None:
    meta, stage1, stage2 = await asyncio.gather(
        registry_orm.get_ticker_meta(tctx.ticker),
        answers_orm.get_latest_stage_answer(ctx.run_id, tctx.ticker, 1),
        answers_orm.get_latest_stage_answer(ctx.run_id, tctx.ticker, 2),
    )
    tctx.meta = meta or {}
    tctx.stage1 = stage1
    tctx.stage2 = stage2

    query = build_retrieval_query(tctx.ticker, tctx.meta, stage1, stage2)
    tctx.retrieval = await fetch_retrieval_context(
        tctx.ticker,
        query,
        embedding_model=ctx.plan.embedding_model,
        credential_id=ctx.plan.credential_id,
        retry=ctx.plan.retry,
    )


async def _notify(ctx: PipelineContext, tctx: TickerContext, summary: SummaryOutcome) -> None:
    dimensions = [{**e.scoreboard_entry(), "summary": e.summary} for e in tctx.ensembles]
    try:
        await dispatch_stage3_notifications(
            run=ctx.run,
            ticker=tctx.ticker,
            summary=summary.payload,
            dimensions=dimensions,
            company=tctx.meta.get("name"),
        )
    except Exception as e:
        logger.warning(f"Notification dispatch failed: {e}", extra={"ticker": tctx.ticker})


def _retrieval_stats(tctx: TickerContext) -> dict[str, int]:
    return {"hits": tctx.retrieval.hits, "embedding_tokens": tctx.retrieval.embedding_tokens}


async def _fail_ticker(
    ctx: PipelineContext,
    tctx: TickerContext,
    error: Exception,
    *,
    claimed: bool = True,
) -> dict[str, Any]:
    message = str(error) or error.__class__.__name__
    logger.error(
        f"Stage 3 processing failed for {tctx.ticker}: {message}",
        extra={"run_id": ctx.run_id, "ticker": tctx.ticker},
    )

    # Invalid answers were already logged with the raw model output
    if not isinstance(error, AnswerValidationError):
        details = error.details if isinstance(error, AppException) else {}
        await log_error(
            "stage3.ticker",
            message,
            run_id=ctx.run_id,
            ticker=tctx.ticker,
            stage=STAGE,
            retry_count=details.get("attempts"),
            status_code=details.get("upstream_status"),
            metadata={"error_type": error.__class__.__name__, "details": details},
        )

    # An unclaimed item may belong to another invocation
    if claimed:
        try:
            await runs_orm.fail_run_item(ctx.run_id, tctx.ticker, tctx.spend)
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark {tctx.ticker} failed: {e}", extra={"run_id": ctx.run_id})

    return {
        "ticker": tctx.ticker,
        "verdict": None,
        "summary": message,
        "updated_at": datetime.now(UTC).isoformat(),
        "status": "failed",
        "retrieval": _retrieval_stats(tctx),
        "cache_hit": False,
    }


async def process_ticker(ctx: PipelineContext, ticker: str) -> tuple[dict[str, Any] | None, TickerContext]:
    """
    Run the full deep dive for one finalist.

    Returns:
        Tuple of (result dict or None when another invocation owns the
        item, ticker context)
    """
    tctx = TickerContext(ticker=ticker)
    try:
        claimed = await runs_orm.claim_run_item(ctx.run_id, ticker, STAGE)
    except SQLAlchemyError as e:
        return await _fail_ticker(ctx, tctx, e, claimed=False), tctx
    if not claimed:
        logger.info(f"Skipping {ticker}: already claimed", extra={"run_id": ctx.run_id})
        return None, tctx

    started_at = datetime.now(UTC)
    try:
        await _load_ticker_inputs(ctx, tctx)

        for question in ctx.questions:
            outcome = await evaluate_question(ctx, tctx, question)
            await persist_question_outcome(ctx, tctx, outcome)

        snapshots = await registry_orm.load_ticker_factor_snapshots(ticker)
        tctx.ensembles = build_ensembles(list(tctx.outcomes.values()), ctx.factor_links, snapshots)
        for ensemble in tctx.ensembles:
            await answers_orm.upsert_dimension_score(ctx.run_id, ticker, ensemble.to_record())

        summary = await compose_summary(ctx, tctx)
        await persist_summary(ctx, tctx, summary)
        await runs_orm.complete_run_item(ctx.run_id, ticker, STAGE, tctx.spend)
    except ConfigurationError:
        await runs_orm.fail_run_item(ctx.run_id, ticker, tctx.spend)
        raise
    except Exception as e:
        return await _fail_ticker(ctx, tctx, e), tctx

    await _notify(ctx, tctx, summary)

    logger.info(
        f"Deep dive complete for {ticker}",
        extra={
            "run_id": ctx.run_id,
            "questions": len(tctx.outcomes),
            "spend": tctx.spend,
            "cache_hits": tctx.cache_hits,
            "retrieval_hits": tctx.retrieval.hits,
        },
    )
    return {
        "ticker": ticker,
        "verdict": summary.verdict,
        "summary": summary.headline or "—",
        "updated_at": started_at.isoformat(),
        "status": "ok",
        "retrieval": _retrieval_stats(tctx),
        "cache_hit": tctx.model_calls > 0 and tctx.cache_hits == tctx.model_calls,
    }, tctx


# =============================================================================
# BATCH
# =============================================================================


def _summary_message(processed: int, pending: int) -> str:
    if processed > 0:
        plural = "" if processed == 1 else "s"
        return f"Processed {processed} finalist{plural}. Pending deep dives: {pending}."
    return "No finalists processed."


async def consume_stage3(
    run_id: Any,
    limit: Any = None,
    client_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Process the next batch of Stage 3 finalists for a run.

    Args:
        run_id: Run UUID
        limit: Batch size, clamped to 1..``STAGE3_BATCH_MAX``
        client_meta: Caller-supplied context, logged only

    Returns:
        Batch response dict (see ``Stage3ConsumeResponse``)

    Raises:
        BadRequestError: run_id is not a UUID
        NotFoundError: Unknown run
        ConflictError: Run flagged to stop, or already being processed
        ConfigurationError: Model, credential or registry problems

    Usage:
        result = await consume_stage3("6f1c...", limit=3)
    """
    run_id = _validate_run_id(run_id)
    batch_size = clamp_limit(limit)

    run = await runs_orm.get_run(run_id)
    if run is None:
        raise NotFoundError("Run not found", details={"run_id": run_id})

    if run.get("stop_requested"):
        metrics = await collect_metrics(run_id)
        raise ConflictError("Run flagged to stop", details={"metrics": metrics})

    logger.info(
        "Stage 3 batch requested",
        extra={"run_id": run_id, "limit": batch_size, "client_meta": client_meta or {}},
    )

    async with run_lock(run_id, STAGE):
        candidates = await runs_orm.list_stage3_candidates(run_id, batch_size)
        if not candidates:
            metrics = await collect_metrics(run_id)
            message = (
                "Stage 3 complete or no finalists marked go-deep."
                if metrics["pending"] == 0
                else "No eligible Stage 3 finalists pending."
            )
            return {
                "run_id": run_id,
                "processed": 0,
                "failed": 0,
                "model": resolve_stage3_plan(run.get("notes")).model_slug,
                "metrics": metrics,
                "results": [],
                "message": message,
                "cache_hits": 0,
                "retrieval": {"total_hits": 0, "embedding_tokens": 0},
            }

        ctx = await build_pipeline_context(run_id, run)

        results: list[dict[str, Any]] = []
        processed = failed = cache_hits = total_hits = embedding_tokens = 0
        for item in candidates:
            result, tctx = await process_ticker(ctx, item["ticker"])
            if result is None:
                continue
            results.append(result)
            if result["status"] == "ok":
                processed += 1
            else:
                failed += 1
            cache_hits += tctx.cache_hits
            total_hits += tctx.retrieval.hits
            embedding_tokens += tctx.retrieval.embedding_tokens

    metrics = await collect_metrics(run_id)
    return {
        "run_id": run_id,
        "processed": processed,
        "failed": failed,
        "model": ctx.model.slug,
        "metrics": metrics,
        "results": results,
        "message": _summary_message(processed, metrics["pending"]),
        "cache_hits": cache_hits,
        "retrieval": {"total_hits": total_hits, "embedding_tokens": embedding_tokens},
    }
