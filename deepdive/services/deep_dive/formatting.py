"""Plain-text renderings of earlier stage answers and the scoreboard for prompts."""

from __future__ import annotations

import json
from typing import Any, Sequence

from .models import EnsembleScore, QuestionDefinition, QuestionOutcome


def format_ticker_profile(ticker: str, meta: dict[str, Any] | None) -> str:
    meta = meta or {}
    return "\n".join([
        f"Ticker: {ticker}",
        f"Name: {meta.get('name') or 'Unknown'}",
        f"Exchange: {meta.get('exchange') or 'n/a'}",
        f"Country: {meta.get('country') or 'n/a'}",
        f"Sector: {meta.get('sector') or 'n/a'}",
        f"Industry: {meta.get('industry') or 'n/a'}",
    ])


def format_stage1_summary(answer: dict[str, Any] | None) -> str:
    if not answer:
        return "Stage 1 answer unavailable."
    label = answer.get("label") or answer.get("classification") or "n/a"
    reasons = answer.get("reasons") if isinstance(answer.get("reasons"), list) else []
    text = f"Label: {label}"
    if reasons:
        numbered = "\n".join(f"{i}. {reason}" for i, reason in enumerate(reasons[:3], start=1))
        text += f"\nReasons:\n{numbered}"
    return text


def format_stage2_summary(answer: dict[str, Any] | None) -> str:
    if not answer:
        return "Stage 2 answer unavailable."
    verdict = answer.get("verdict") if isinstance(answer.get("verdict"), dict) else {}
    summary = verdict.get("summary") if isinstance(verdict.get("summary"), str) else None

    go_deep = verdict.get("go_deep")
    if isinstance(go_deep, str):
        go_deep = go_deep.strip().lower() == "true"
    elif not isinstance(go_deep, bool):
        go_deep = None

    text = summary or "No verdict provided."
    if go_deep is not None:
        text += f"\nGo deep: {'yes' if go_deep else 'no'}"
    return text.strip()


def format_dependency_digest(
    question: QuestionDefinition, prior: dict[str, QuestionOutcome]
) -> str:
    """Digest of the answers a question declared it depends on."""
    if not question.depends_on:
        return "None."
    lines = []
    for slug in question.depends_on:
        outcome = prior.get(slug)
        if outcome is None:
            lines.append(f"- {slug}: not answered")
            continue
        score = f"{outcome.score:g}" if outcome.score is not None else "n/a"
        lines.append(f"- {slug}: {outcome.verdict} (score {score}) {outcome.summary}".rstrip())
    return "\n".join(lines)


def format_answer_schema(question: QuestionDefinition) -> str:
    if question.answer_schema:
        return json.dumps(question.answer_schema, indent=2, sort_keys=True)
    return '{"verdict": "bad|neutral|good", "score": 0-100, "summary": string, "tags": [string]}'


def format_scoreboard(ensembles: Sequence[EnsembleScore]) -> str:
    return json.dumps([e.scoreboard_entry() for e in ensembles], indent=2)
