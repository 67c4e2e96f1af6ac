"""Final Stage 3 memo composed from the dimension scoreboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from deepdive.services.ai import validate_stage3_summary

from .context import PipelineContext, TickerContext
from .evaluator import request_validated_json
from .formatting import format_scoreboard, format_stage1_summary, format_stage2_summary


@dataclass(frozen=True)
class SummaryOutcome:
    """Validated memo plus the usage of the call that produced it."""
    payload: dict[str, Any]
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    cache_hit: bool = False
    citations: list[dict[str, Any]] = field(default_factory=list)

    @property
    def thesis(self) -> str | None:
        for key in ("thesis", "narrative"):
            value = self.payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    @property
    def headline(self) -> str:
        """Thesis, else summary, else narrative."""
        for key in ("thesis", "summary", "narrative"):
            value = self.payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    @property
    def verdict(self) -> str | None:
        for key in ("verdict", "rating"):
            value = self.payload.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return None


async def compose_summary(ctx: PipelineContext, tctx: TickerContext) -> SummaryOutcome:
    """
    Ask for the overall verdict, conviction and thesis for one ticker.

    Requires ``tctx.ensembles`` to be populated. Retrieval citations are
    attached to the stored payload under ``citations``.

    Raises:
        AnswerValidationError: The memo is not JSON or lacks a thesis
    """
    tokens = {
        "ticker": tctx.ticker,
        "company": tctx.company,
        "stage1_summary": format_stage1_summary(tctx.stage1),
        "stage2_summary": format_stage2_summary(tctx.stage2),
        "scoreboard": format_scoreboard(tctx.ensembles),
        "retrieval_block": tctx.retrieval.text,
    }

    payload, result = await request_validated_json(
        ctx,
        tctx,
        system=ctx.prompts.render("stage3-summary-system", tokens),
        user=ctx.prompts.render("stage3-summary-user", tokens),
        key_parts=["stage3", tctx.ticker, "summary"],
        validator=validate_stage3_summary,
        error_context="stage3.summary",
        prompt_id="summary",
    )

    citations = tctx.retrieval.citations
    return SummaryOutcome(
        payload={**payload, "citations": citations},
        tokens_in=result.usage.prompt_tokens,
        tokens_out=result.usage.completion_tokens,
        cost_usd=result.usage.cost_usd,
        cache_hit=result.cache_hit,
        citations=citations,
    )
