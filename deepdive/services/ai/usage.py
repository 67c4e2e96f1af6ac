"""
Token usage and cost accounting.

Providers report usage under either chat-completions keys
(``prompt_tokens``/``completion_tokens``) or responses keys
(``input_tokens``/``output_tokens``). When a provider omits usage the
counts are estimated with tiktoken.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import tiktoken

from deepdive.core.logging import get_logger

from .resolver import ModelProfile


logger = get_logger("ai.usage")


@dataclass(frozen=True)
class UsageMetrics:
    """Token counts and cost of one model call."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


ZERO_USAGE = UsageMetrics()


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def compute_usage_cost(model: ModelProfile, usage: dict[str, Any] | None) -> UsageMetrics:
    """
    Price a usage record against a model's per-million-token rates.

    Example:
        >>> profile = ModelProfile(slug="m", provider="openai", model_name="m",
        ...                        price_in=1.0, price_out=2.0)
        >>> compute_usage_cost(profile, {"prompt_tokens": 1_000_000,
        ...                              "completion_tokens": 500_000}).cost_usd
        2.0
    """
    usage = usage or {}
    prompt_tokens = _as_int(usage.get("prompt_tokens") or usage.get("input_tokens"))
    completion_tokens = _as_int(usage.get("completion_tokens") or usage.get("output_tokens"))
    cost = (prompt_tokens / 1_000_000) * model.price_in + (
        completion_tokens / 1_000_000
    ) * model.price_out
    return UsageMetrics(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        cost_usd=cost,
    )


@lru_cache(maxsize=8)
def _get_encoding(model: str) -> tiktoken.Encoding:
    """Encoding for a model name, falling back to o200k_base for unknown models."""
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("o200k_base")


def count_tokens(text: str, model: str) -> int:
    """Count tokens in text using tiktoken."""
    if not text:
        return 0
    return len(_get_encoding(model).encode(text))


def estimate_usage(model_name: str, messages: list[dict[str, Any]], output_text: str) -> dict[str, int]:
    """Estimate a usage record for a chat exchange."""
    prompt = "\n".join(str(m.get("content") or "") for m in messages)
    prompt_tokens = count_tokens(prompt, model_name)
    completion_tokens = count_tokens(output_text, model_name)
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
        "estimated": True,
    }
