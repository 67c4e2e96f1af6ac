"""
Per-stage model configuration.

Stage defaults come from application settings; a run's planner notes may
override the model, fallback, credential and request/retry tuning.
"""

from __future__ import annotations

import json
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any

from deepdive.core.config import settings
from deepdive.core.logging import get_logger


logger = get_logger("ai.config")

DEFAULT_CACHE_TTL_MINUTES = 60 * 24 * 7

_SCOPE_INVALID = re.compile(r"[^A-Z0-9]+")

_NUMERIC_REQUEST_KEYS = (
    "temperature",
    "top_p",
    "presence_penalty",
    "frequency_penalty",
    "max_tokens",
    "max_output_tokens",
)


def _finite_number(value: Any) -> float | int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _as_mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


@dataclass(frozen=True)
class RequestSettings:
    """Tunable request parameters applied on top of a chat body."""
    temperature: float | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    max_tokens: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    cache: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Any, base: "RequestSettings | None" = None) -> "RequestSettings":
        """Build settings from a loose mapping, layered over ``base``."""
        data = _as_mapping(data)
        base = base or cls()
        values: dict[str, Any] = {}
        for key in _NUMERIC_REQUEST_KEYS:
            number = _finite_number(data.get(key))
            values[key] = number if number is not None else getattr(base, key)

        stops = data.get("stop_sequences")
        if isinstance(stops, list) and stops:
            values["stop_sequences"] = tuple(str(s) for s in stops)
        else:
            values["stop_sequences"] = base.stop_sequences

        values["metadata"] = {**base.metadata, **_as_mapping(data.get("metadata"))}
        values["cache"] = _as_mapping(data.get("cache")) or base.cache
        return cls(**values)


@dataclass(frozen=True)
class RetrySettings:
    """Bounded retry policy for transient upstream failures."""
    attempts: int = 1
    backoff_ms: int = 0
    jitter: int = 0

    @classmethod
    def from_mapping(cls, data: Any, base: "RetrySettings | None" = None) -> "RetrySettings":
        data = _as_mapping(data)
        base = base or cls()

        def pick(key: str, current: int) -> int:
            number = _finite_number(data.get(key))
            return int(number) if number is not None else current

        return cls(
            attempts=max(1, pick("attempts", base.attempts)),
            backoff_ms=max(0, pick("backoff_ms", base.backoff_ms)),
            jitter=max(0, pick("jitter", base.jitter)),
        )


@dataclass(frozen=True)
class StageModelPlan:
    """Resolved model choice for one stage of a run."""
    model_slug: str
    fallback_slug: str | None
    credential_id: str | None
    embedding_model: str | None
    request: RequestSettings
    retry: RetrySettings


def stage3_defaults() -> tuple[RequestSettings, RetrySettings]:
    """Stage 3 request/retry defaults from application settings."""
    request = RequestSettings(
        temperature=settings.stage3_temperature,
        max_tokens=settings.stage3_max_tokens,
    )
    retry = RetrySettings(
        attempts=settings.stage3_retry_attempts,
        backoff_ms=settings.stage3_retry_backoff_ms,
        jitter=settings.stage3_retry_jitter_ms,
    )
    return request, retry


def _parse_notes(notes: Any) -> dict[str, Any]:
    if isinstance(notes, str):
        try:
            notes = json.loads(notes)
        except json.JSONDecodeError:
            logger.warning("Run notes are not valid JSON, using stage defaults")
            return {}
    return _as_mapping(notes)


def resolve_stage3_plan(notes: Any) -> StageModelPlan:
    """
    Resolve the Stage 3 model plan from run notes.

    Reads ``notes.planner.stage3`` for ``model``, ``fallback``,
    ``credentialId``, ``embedding_model``, ``request`` and ``retry``; anything
    missing falls back to application settings.
    """
    planner = _as_mapping(_parse_notes(notes).get("planner"))
    stage = _as_mapping(planner.get("stage3"))
    request_defaults, retry_defaults = stage3_defaults()

    credential_id = stage.get("credentialId") or stage.get("credential_id")
    return StageModelPlan(
        model_slug=str(stage.get("model") or settings.stage3_model),
        fallback_slug=stage.get("fallback") or stage.get("fallback_model") or settings.stage3_fallback_model,
        credential_id=str(credential_id) if credential_id else None,
        embedding_model=stage.get("embedding_model") or settings.embedding_model or None,
        request=RequestSettings.from_mapping(stage.get("request"), request_defaults),
        retry=RetrySettings.from_mapping(stage.get("retry"), retry_defaults),
    )


def apply_request_settings(body: dict[str, Any], request: RequestSettings | None) -> dict[str, Any]:
    """Return a copy of a chat body with request settings applied."""
    if request is None:
        return body

    result = dict(body)
    for key in _NUMERIC_REQUEST_KEYS:
        value = getattr(request, key)
        if _finite_number(value) is not None:
            result[key] = value

    if request.stop_sequences:
        result["stop"] = list(request.stop_sequences)

    if request.metadata:
        result["metadata"] = {**_as_mapping(result.get("metadata")), **request.metadata}

    if request.cache:
        result["extra_body"] = {**_as_mapping(result.get("extra_body")), "cache": dict(request.cache)}

    return result


def resolve_cache_ttl_minutes(scope: str, fallback: int | None = None) -> int:
    """
    Cache TTL for a scope.

    Checks ``<SCOPE>_CACHE_TTL_MINUTES`` then ``AI_CACHE_TTL_MINUTES`` in the
    environment; only positive numbers count.
    """
    normalized = _SCOPE_INVALID.sub("_", scope.upper()).strip("_") or "CACHE"
    for name in (f"{normalized}_CACHE_TTL_MINUTES", "AI_CACHE_TTL_MINUTES"):
        raw = os.environ.get(name)
        if not raw:
            continue
        try:
            value = float(raw)
        except ValueError:
            continue
        if math.isfinite(value) and value > 0:
            return round(value)
    if fallback is not None:
        return fallback
    return settings.ai_cache_ttl_minutes or DEFAULT_CACHE_TTL_MINUTES
