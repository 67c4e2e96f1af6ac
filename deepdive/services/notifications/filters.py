"""Alert context normalization and channel matching.

Turns a finished deep dive into an ``AlertContext`` and decides which
active channels should hear about it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping


ConvictionLevel = Literal["very_high", "high", "medium", "low", "unknown"]

CONVICTION_ORDER: dict[str, int] = {
    "very_high": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
    "unknown": 0,
}


@dataclass(frozen=True)
class AlertContext:
    """Normalized view of one ticker's Stage 3 result for alerting."""
    run_id: str
    ticker: str
    company: str | None
    conviction_level: ConvictionLevel
    conviction_text: str | None
    ensemble_score: float | None
    verdict: str | None
    summary: str | None
    watchlist_id: str | None = None
    run_label: str | None = None
    dimensions: list[dict[str, Any]] = field(default_factory=list)
    stage3_summary: dict[str, Any] = field(default_factory=dict)

    @property
    def conviction_label(self) -> str:
        return self.conviction_text or self.conviction_level.replace("_", " ")

    @property
    def has_substance(self) -> bool:
        return bool(self.summary or self.verdict)


def _clean_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_conviction(value: Any) -> tuple[ConvictionLevel, str | None]:
    """
    Bucket free-text conviction into a level.

    Returns:
        Tuple of (level, original trimmed text)

    Example:
        >>> normalize_conviction("Very High")
        ('very_high', 'Very High')
        >>> normalize_conviction("moderate")
        ('medium', 'moderate')
    """
    text = _clean_text(value)
    if text is None:
        return "unknown", None
    lowered = text.lower().replace("_", " ").replace("-", " ")
    if "very high" in lowered:
        return "very_high", text
    if "high" in lowered:
        return "high", text
    if "medium" in lowered or "moderate" in lowered:
        return "medium", text
    if "low" in lowered:
        return "low", text
    return "unknown", text


def compare_conviction(a: str, b: str) -> int:
    """Positive when ``a`` is the stronger conviction."""
    return CONVICTION_ORDER.get(a, 0) - CONVICTION_ORDER.get(b, 0)


def _finite(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _score(value: Any) -> float | None:
    number = _finite(value)
    if number is None:
        return None
    return round(min(max(number, 0.0), 100.0), 2)


def compute_ensemble_score(entries: Iterable[Mapping[str, Any]]) -> float | None:
    """
    Weight-averaged ensemble score across dimensions.

    Entries read ``ensembleScore`` (or ``score``) and ``weight``. Missing
    weights count as 1 and non-positive weights are skipped.
    """
    weighted = 0.0
    total = 0.0
    for entry in entries:
        raw = entry.get("ensembleScore")
        score = _score(raw if raw is not None else entry.get("score"))
        if score is None:
            continue
        weight = _finite(entry.get("weight"))
        if weight is None:
            weight = 1.0
        if weight <= 0:
            continue
        weighted += score * weight
        total += weight
    if total <= 0:
        return None
    return round(weighted / total, 2)


def build_alert_context(
    *,
    run_id: str,
    ticker: str,
    summary: Mapping[str, Any] | None,
    dimensions: list[dict[str, Any]],
    company: str | None = None,
    verdict: str | None = None,
    conviction: str | None = None,
    summary_text: str | None = None,
    watchlist_id: str | None = None,
    run_label: str | None = None,
) -> AlertContext:
    """
    Normalize a Stage 3 result for alerting.

    Conviction is read from the summary's ``conviction``, ``confidence`` or
    ``signal`` field before the caller-supplied value. Summary text prefers
    the explicit text, then thesis, summary and narrative.
    """
    stage3 = dict(summary or {})

    text = (
        _clean_text(summary_text)
        or _clean_text(stage3.get("thesis"))
        or _clean_text(stage3.get("summary"))
        or _clean_text(stage3.get("narrative"))
    )

    raw_conviction = None
    for key in ("conviction", "confidence", "signal"):
        if stage3.get(key) is not None:
            raw_conviction = stage3[key]
            break
    if raw_conviction is None:
        raw_conviction = conviction
    level, conviction_text = normalize_conviction(
        raw_conviction if isinstance(raw_conviction, str) else None
    )

    return AlertContext(
        run_id=run_id,
        ticker=ticker,
        company=_clean_text(company) or _clean_text(stage3.get("company")),
        conviction_level=level,
        conviction_text=conviction_text,
        ensemble_score=compute_ensemble_score(dimensions),
        verdict=_clean_text(stage3.get("verdict")) or _clean_text(verdict),
        summary=text,
        watchlist_id=watchlist_id,
        run_label=run_label,
        dimensions=dimensions,
        stage3_summary=stage3,
    )


def normalize_channel_levels(levels: Iterable[Any]) -> list[str]:
    return [
        "_".join(level.strip().lower().split())
        for level in levels
        if isinstance(level, str) and level.strip()
    ]


def match_channel(channel: Mapping[str, Any], context: AlertContext) -> bool:
    """
    Whether a channel's filters admit this alert.

    - ``min_score``: ensemble score must reach it (unknown scores pass)
    - ``conviction_levels``: allow-list; ``high`` also admits ``very_high``
    - ``watchlist_ids``: allow-list on the run's watchlist; empty admits all
    """
    min_score = channel.get("min_score")
    if (
        min_score is not None
        and context.ensemble_score is not None
        and context.ensemble_score < float(min_score)
    ):
        return False

    levels = normalize_channel_levels(channel.get("conviction_levels") or [])
    if levels and context.conviction_level not in levels:
        if not (context.conviction_level == "very_high" and "high" in levels):
            return False

    watchlists = [str(w) for w in channel.get("watchlist_ids") or [] if w]
    if watchlists and (not context.watchlist_id or context.watchlist_id not in watchlists):
        return False

    return True
