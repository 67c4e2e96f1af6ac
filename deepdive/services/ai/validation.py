"""
Parsing and validation of Stage 3 model output.

Validators never raise; they return a ``ValidationResult`` and the pipeline
decides at the per-ticker boundary whether to turn it into an
``AnswerValidationError``.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any


_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one model response."""
    valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=list(errors))

    def explain(self) -> str:
        return "valid" if self.valid else "; ".join(self.errors)


def parse_json_payload(text: str) -> dict[str, Any]:
    """
    Parse a model's JSON object output.

    Tolerates a surrounding markdown code fence.

    Raises:
        ValueError: Output is empty, not JSON, or not a JSON object
    """
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValueError("Model returned empty output")
    fenced = _FENCE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"Model output is not valid JSON: {e.msg}") from e
    if not isinstance(payload, dict):
        raise ValueError("Model output must be a JSON object")
    return payload


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _is_short_string_list(value: Any, max_items: int, max_length: int) -> bool:
    if not isinstance(value, list) or len(value) > max_items:
        return False
    return all(_clean(entry) and len(_clean(entry)) <= max_length for entry in value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def validate_stage3_question(
    payload: Any, answer_schema: dict[str, Any] | None = None
) -> ValidationResult:
    """
    Validate a Stage 3 question answer.

    Requires one of verdict/rating/outlook. Optional fields are checked when
    present: score in 0-100, at most 12 tags of 60 chars, at most 12 signals
    of 280 chars, non-blank summary. Keys listed in the question's own
    ``answer_schema["required"]`` must be present.
    """
    if not isinstance(payload, dict):
        return ValidationResult.from_errors(["Response must be an object"])

    errors: list[str] = []

    if not _clean(payload.get("verdict") or payload.get("rating") or payload.get("outlook")):
        errors.append("At least one of `verdict`, `rating`, or `outlook` must be provided")

    if "score" in payload or "numeric_score" in payload:
        raw = payload.get("score")
        if raw is None:
            raw = payload.get("numeric_score")
        if raw is not None:
            score = _as_number(raw)
            if score is None or not 0 <= score <= 100:
                errors.append("`score` must be a number between 0 and 100 when provided")

    if payload.get("tags") and not _is_short_string_list(payload["tags"], 12, 60):
        errors.append("`tags` must be an array of short strings when present")

    if payload.get("signals") and not _is_short_string_list(payload["signals"], 12, 280):
        errors.append("`signals` must be an array of short strings when present")

    summary = payload.get("summary")
    if summary and not _clean(summary):
        errors.append("`summary` must be a non-empty string when provided")

    required = (answer_schema or {}).get("required")
    if isinstance(required, list):
        for key in required:
            if isinstance(key, str) and payload.get(key) in (None, ""):
                errors.append(f"`{key}` is required by the question schema")

    return ValidationResult.from_errors(errors)


def validate_stage3_summary(payload: Any) -> ValidationResult:
    """Validate the final Stage 3 summary (thesis/narrative/summary required)."""
    if not isinstance(payload, dict):
        return ValidationResult.from_errors(["Response must be an object"])

    errors: list[str] = []
    if not _clean(payload.get("thesis") or payload.get("narrative") or payload.get("summary")):
        errors.append("Summary response must include a `thesis`, `narrative`, or `summary` string")

    if payload.get("scoreboard") and not isinstance(payload["scoreboard"], list):
        errors.append("`scoreboard` must be an array when provided")

    return ValidationResult.from_errors(errors)
