"""Typed records for the Stage 3 deep dive."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Verdict = Literal["bad", "neutral", "good"]


@dataclass(frozen=True)
class Dimension:
    """Scoring dimension grouping related questions."""
    id: str
    slug: str
    name: str
    weight: float = 1.0
    order_index: int = 0
    color_bad: str | None = None
    color_neutral: str | None = None
    color_good: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Dimension":
        return cls(
            id=str(row["id"]),
            slug=str(row["slug"]),
            name=str(row.get("name") or row["slug"]),
            weight=float(row["weight"]) if row.get("weight") is not None else 1.0,
            order_index=int(row.get("order_index") or 0),
            color_bad=row.get("color_bad"),
            color_neutral=row.get("color_neutral"),
            color_good=row.get("color_good"),
        )

    def color_for(self, verdict: str) -> str | None:
        return {
            "good": self.color_good,
            "bad": self.color_bad,
        }.get(verdict, self.color_neutral)


@dataclass(frozen=True)
class QuestionDefinition:
    """One registry question, read-only to the engine."""
    id: str
    slug: str
    dimension: Dimension
    prompt: str
    title: str | None = None
    guidance: str | None = None
    weight: float = 1.0
    answer_schema: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    order_index: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "QuestionDefinition":
        return cls(
            id=str(row["id"]),
            slug=str(row["slug"]),
            dimension=Dimension.from_row(row["dimension"]),
            prompt=str(row.get("prompt") or ""),
            title=row.get("title"),
            guidance=row.get("guidance"),
            weight=float(row["weight"]) if row.get("weight") is not None else 1.0,
            answer_schema=dict(row.get("answer_schema") or {}),
            depends_on=tuple(str(s) for s in row.get("depends_on") or ()),
            tags=tuple(str(t) for t in row.get("tags") or ()),
            order_index=int(row.get("order_index") or 0),
        )


@dataclass(frozen=True)
class QuestionOutcome:
    """Validated answer to one question for one ticker."""
    question: QuestionDefinition
    verdict: Verdict
    score: float | None
    summary: str
    tags: list[str]
    answer: dict[str, Any]
    citations: list[dict[str, Any]]
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    cache_hit: bool = False
    retrieval: list[dict[str, Any]] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        return {
            "question_id": self.question.id,
            "question_slug": self.question.slug,
            "dimension_id": self.question.dimension.id,
            "verdict": self.verdict,
            "score": self.score,
            "weight": self.question.weight,
            "summary": self.summary,
            "tags": self.tags,
            "answer": self.answer,
            "citations": self.citations,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "cost_usd": self.cost_usd,
            "cache_hit": self.cache_hit,
            "retrieval": self.retrieval,
        }


@dataclass(frozen=True)
class DimensionSummary:
    """Question outcomes rolled up per dimension, before factor blending."""
    dimension: Dimension
    verdict: Verdict
    score: float | None
    weight: float
    summary: str
    tags: list[str]
    details: dict[str, Any]


@dataclass(frozen=True)
class EnsembleScore:
    """Dimension summary blended with deterministic factor scores."""
    dimension: Dimension
    verdict: Verdict
    color: str | None
    summary: str
    tags: list[str]
    details: dict[str, Any]
    llm_score: float
    llm_weight: float
    factor_score: float | None
    factor_weight: float
    factor_breakdown: list[dict[str, Any]]
    ensemble_score: float
    weight: float

    @property
    def score(self) -> float:
        return self.ensemble_score

    def to_record(self) -> dict[str, Any]:
        return {
            "dimension_id": self.dimension.id,
            "verdict": self.verdict,
            "score": self.ensemble_score,
            "weight": self.weight,
            "color": self.color,
            "summary": self.summary,
            "tags": self.tags,
            "llm_score": self.llm_score,
            "llm_weight": self.llm_weight,
            "factor_score": self.factor_score,
            "factor_weight": self.factor_weight,
            "factor_breakdown": self.factor_breakdown,
            "ensemble_score": self.ensemble_score,
            "details": self.details,
        }

    def scoreboard_entry(self) -> dict[str, Any]:
        """Compact form used in the summary prompt and alert messages."""
        return {
            "dimension": self.dimension.slug,
            "name": self.dimension.name,
            "verdict": self.verdict,
            "ensembleScore": self.ensemble_score,
            "llmScore": self.llm_score,
            "factorScore": self.factor_score,
            "weight": self.dimension.weight,
            "tags": self.tags,
            "factors": [
                {"slug": f["slug"], "score": f["score"], "weight": f["weight"]}
                for f in self.factor_breakdown
            ],
        }
