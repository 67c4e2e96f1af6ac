"""
Ensemble scoring.

Per dimension, the LLM-derived score (weighted mean of question scores) is
blended with deterministic factor scores from the ticker's latest factor
snapshots:

    ensemble = (llm * llm_weight + factor * factor_weight) / (llm_weight + factor_weight)

With no usable factor weight the ensemble equals the LLM score exactly. The
verdict is re-banded from the ensemble score: <= 33 bad, >= 67 good,
otherwise neutral.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Any, Iterable, Mapping, Sequence

from deepdive.core.logging import get_logger

from .models import Dimension, DimensionSummary, EnsembleScore, QuestionOutcome, Verdict


logger = get_logger("deep_dive.ensemble")

BAD_THRESHOLD = 33
GOOD_THRESHOLD = 67

VERDICT_HEURISTIC_SCORES: dict[str, float] = {"good": 80.0, "neutral": 50.0, "bad": 20.0}


def _finite(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp_score(value: Any) -> float | None:
    """Clamp to [0, 100] and round to 2 decimals; None for non-numbers."""
    number = _finite(value)
    if number is None:
        return None
    return round(min(max(number, 0.0), 100.0), 2)


def normalize_weight(value: Any, fallback: float = 1.0, allow_zero: bool = False) -> float:
    """
    Sanitize a weight.

    Non-finite or negative values use ``fallback``; zero also uses it unless
    ``allow_zero`` is set. Rounded to 4 decimals.
    """
    number = _finite(value)
    if number is None or number < 0:
        return fallback
    if number == 0 and not allow_zero:
        return fallback
    return round(number, 4)


def verdict_band(score: float) -> Verdict:
    if score <= BAD_THRESHOLD:
        return "bad"
    if score >= GOOD_THRESHOLD:
        return "good"
    return "neutral"


def compute_snapshot_score(snapshot: Mapping[str, Any], factor: Mapping[str, Any]) -> float | None:
    """
    Normalize a factor snapshot to 0-100.

    Uses the snapshot's direct score when present, else min/max scaling,
    else distance from the factor's ``ideal`` (metadata) within
    ``tolerance``. Returns None when none of these apply.
    """
    direct = clamp_score(snapshot.get("score"))
    if direct is not None:
        return direct

    value = _finite(snapshot.get("value"))
    if value is None:
        return None

    lower_better = factor.get("direction") == "lower_better"
    scale_min = _finite(factor.get("scale_min"))
    scale_max = _finite(factor.get("scale_max"))
    if scale_min is not None and scale_max is not None and scale_min != scale_max:
        clamped = min(max(value, min(scale_min, scale_max)), max(scale_min, scale_max))
        ratio = (clamped - scale_min) / (scale_max - scale_min)
        ratio = min(max(ratio, 0.0), 1.0)
        if lower_better:
            ratio = 1 - ratio
        return round(ratio * 100, 2)

    metadata = factor.get("metadata") or {}
    ideal = _finite(metadata.get("ideal")) if isinstance(metadata, dict) else None
    if ideal is None:
        return None

    tolerance = _finite(metadata.get("tolerance"))
    spread = tolerance if tolerance and tolerance > 0 else max(abs(ideal) or 1.0, 0.0001)
    if lower_better and value <= ideal:
        return 100.0
    ratio = min(max(1 - abs(value - ideal) / (spread * 2), 0.0), 1.0)
    return round(ratio * 100, 2)


def _weighted_verdict(outcomes: Sequence[QuestionOutcome]) -> Verdict:
    tally: dict[str, float] = defaultdict(float)
    for outcome in outcomes:
        tally[outcome.verdict] += normalize_weight(outcome.question.weight, 1.0, allow_zero=True)
    if not tally:
        return "neutral"
    best = max(tally.values())
    leaders = [v for v, w in tally.items() if w == best]
    return leaders[0] if len(leaders) == 1 else "neutral"


def summarize_dimension(dimension: Dimension, outcomes: Sequence[QuestionOutcome]) -> DimensionSummary:
    """Roll question outcomes up into a dimension summary."""
    weight_total = 0.0
    scored_sum = 0.0
    scored_weight = 0.0
    scores: list[float] = []
    for outcome in outcomes:
        weight = normalize_weight(outcome.question.weight, 1.0, allow_zero=True)
        weight_total += weight
        if outcome.score is not None:
            scores.append(outcome.score)
            scored_sum += outcome.score * weight
            scored_weight += weight

    score: float | None = None
    if scored_weight > 0:
        score = clamp_score(scored_sum / scored_weight)
    elif scores:
        score = clamp_score(sum(scores) / len(scores))

    verdict = verdict_band(score) if score is not None else _weighted_verdict(outcomes)

    tags: list[str] = []
    for outcome in outcomes:
        for tag in outcome.tags:
            if tag not in tags:
                tags.append(tag)

    return DimensionSummary(
        dimension=dimension,
        verdict=verdict,
        score=score,
        weight=round(weight_total, 4),
        summary=" ".join(o.summary for o in outcomes if o.summary).strip(),
        tags=tags[:12],
        details={
            "questions": [
                {
                    "slug": o.question.slug,
                    "verdict": o.verdict,
                    "score": o.score,
                    "weight": o.question.weight,
                }
                for o in outcomes
            ]
        },
    )


def blend_dimension(
    summary: DimensionSummary,
    links: Iterable[Mapping[str, Any]],
    snapshots: Mapping[str, Mapping[str, Any]],
) -> EnsembleScore:
    """Blend one dimension summary with its linked factor snapshots."""
    llm_score = clamp_score(summary.score) if summary.score is not None else None
    if llm_score is None:
        llm_score = VERDICT_HEURISTIC_SCORES.get(summary.verdict, 50.0)
    llm_weight = normalize_weight(summary.weight, 1.0, allow_zero=True)

    breakdown: list[dict[str, Any]] = []
    weighted_sum = 0.0
    factor_weight = 0.0
    for link in links:
        factor = link.get("factor") or {}
        snapshot = snapshots.get(str(factor.get("id")))
        if not snapshot:
            continue
        score = compute_snapshot_score(snapshot, factor)
        if score is None:
            continue
        weight = normalize_weight(link.get("weight"), 1.0, allow_zero=True) * normalize_weight(
            factor.get("weight", 1.0), 1.0, allow_zero=True
        )
        if weight <= 0:
            continue
        weighted_sum += score * weight
        factor_weight += weight
        breakdown.append({
            "slug": factor.get("slug"),
            "name": factor.get("name"),
            "score": round(score, 2),
            "value": snapshot.get("value"),
            "weight": round(weight, 4),
            "as_of": snapshot.get("as_of"),
            "direction": factor.get("direction") or "higher_better",
            "source": snapshot.get("source"),
            "notes": snapshot.get("notes"),
            "scale_min": factor.get("scale_min"),
            "scale_max": factor.get("scale_max"),
            "metadata": {**(factor.get("metadata") or {}), **(snapshot.get("metadata") or {})},
        })

    factor_score = round(weighted_sum / factor_weight, 2) if factor_weight > 0 else None
    ensemble = llm_score
    if factor_score is not None and factor_weight > 0:
        ensemble = round(
            (llm_score * llm_weight + factor_score * factor_weight) / (llm_weight + factor_weight),
            2,
        )

    verdict = verdict_band(ensemble)
    return EnsembleScore(
        dimension=summary.dimension,
        verdict=verdict,
        color=summary.dimension.color_for(verdict),
        summary=summary.summary,
        tags=summary.tags,
        details=summary.details,
        llm_score=llm_score,
        llm_weight=llm_weight,
        factor_score=factor_score,
        factor_weight=round(factor_weight, 4),
        factor_breakdown=breakdown,
        ensemble_score=ensemble,
        weight=round(llm_weight + factor_weight, 4),
    )


def build_ensembles(
    outcomes: Sequence[QuestionOutcome],
    factor_links: Mapping[str, Sequence[Mapping[str, Any]]],
    snapshots: Mapping[str, Mapping[str, Any]],
) -> list[EnsembleScore]:
    """Ensemble scores for every dimension that has outcomes, in dimension order."""
    grouped: dict[str, list[QuestionOutcome]] = defaultdict(list)
    dimensions: dict[str, Dimension] = {}
    for outcome in outcomes:
        dimension = outcome.question.dimension
        grouped[dimension.id].append(outcome)
        dimensions[dimension.id] = dimension

    ordered = sorted(dimensions.values(), key=lambda d: (d.order_index, d.slug))
    return [
        blend_dimension(
            summarize_dimension(dimension, grouped[dimension.id]),
            factor_links.get(dimension.id, ()),
            snapshots,
        )
        for dimension in ordered
    ]
