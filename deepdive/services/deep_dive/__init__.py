"""
Stage 3 deep-dive engine.

Usage:
    from deepdive.services.deep_dive import consume_stage3

    result = await consume_stage3(run_id, limit=2)
"""

from deepdive.services.deep_dive.context import PipelineContext, TickerContext
from deepdive.services.deep_dive.ensemble import (
    blend_dimension,
    build_ensembles,
    clamp_score,
    compute_snapshot_score,
    summarize_dimension,
    verdict_band,
)
from deepdive.services.deep_dive.evaluator import evaluate_question, normalize_verdict
from deepdive.services.deep_dive.graph import order_questions
from deepdive.services.deep_dive.models import (
    Dimension,
    DimensionSummary,
    EnsembleScore,
    QuestionDefinition,
    QuestionOutcome,
)
from deepdive.services.deep_dive.pipeline import (
    build_pipeline_context,
    clamp_limit,
    collect_metrics,
    consume_stage3,
    process_ticker,
)
from deepdive.services.deep_dive.summary import SummaryOutcome, compose_summary


__all__ = [
    "Dimension",
    "DimensionSummary",
    "EnsembleScore",
    "PipelineContext",
    "QuestionDefinition",
    "QuestionOutcome",
    "SummaryOutcome",
    "TickerContext",
    "blend_dimension",
    "build_ensembles",
    "build_pipeline_context",
    "clamp_limit",
    "clamp_score",
    "collect_metrics",
    "compose_summary",
    "compute_snapshot_score",
    "consume_stage3",
    "evaluate_question",
    "normalize_verdict",
    "order_questions",
    "process_ticker",
    "summarize_dimension",
    "verdict_band",
]
