"""Per-invocation and per-ticker state for the Stage 3 pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from deepdive.services.ai import (
    EMPTY_RETRIEVAL,
    Credential,
    ModelProfile,
    PromptLibrary,
    RetrievalContext,
    StageModelPlan,
)

from .models import EnsembleScore, QuestionDefinition, QuestionOutcome


@dataclass
class PipelineContext:
    """
    Everything resolved once per batch.

    The prompt library lives here so templates are read once per invocation
    and never cached across processes.
    """
    run_id: str
    run: dict[str, Any]
    plan: StageModelPlan
    model: ModelProfile
    credential: Credential
    prompts: PromptLibrary
    questions: list[QuestionDefinition]
    factor_links: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @property
    def stage(self) -> int:
        return 3


@dataclass
class TickerContext:
    """Mutable state for one finalist while it is being processed."""
    ticker: str
    meta: dict[str, Any] = field(default_factory=dict)
    stage1: dict[str, Any] | None = None
    stage2: dict[str, Any] | None = None
    retrieval: RetrievalContext = EMPTY_RETRIEVAL
    outcomes: dict[str, QuestionOutcome] = field(default_factory=dict)
    ensembles: list[EnsembleScore] = field(default_factory=list)
    spend: float = 0.0
    cache_hits: int = 0
    model_calls: int = 0

    @property
    def company(self) -> str:
        return str(self.meta.get("name") or self.ticker)

    def record_call(self, cost_usd: float, cache_hit: bool) -> None:
        self.model_calls += 1
        if cache_hit:
            self.cache_hits += 1
        else:
            self.spend = round(self.spend + cost_usd, 6)
