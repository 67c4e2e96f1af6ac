"""
AI provider package: model resolution, caching, retrieval and validation.

Usage:
    from deepdive.services.ai import (
        resolve_model,
        resolve_credential,
        cached_chat_completion,
        fetch_retrieval_context,
        validate_stage3_question,
    )
"""

from deepdive.services.ai.canonical import build_cache_key, hash_request_body, stable_stringify
from deepdive.services.ai.client import (
    chat_completion,
    close_client_pool,
    create_embedding,
    get_client_pool,
)
from deepdive.services.ai.completion_cache import CompletionResult, cached_chat_completion
from deepdive.services.ai.config import (
    RequestSettings,
    RetrySettings,
    StageModelPlan,
    apply_request_settings,
    resolve_cache_ttl_minutes,
    resolve_stage3_plan,
)
from deepdive.services.ai.resolver import (
    Credential,
    ModelProfile,
    build_provider_headers,
    resolve_base_url,
    resolve_credential,
    resolve_model,
)
from deepdive.services.ai.retrieval import (
    EMPTY_RETRIEVAL,
    EMPTY_RETRIEVAL_TEXT,
    RetrievalContext,
    build_retrieval_query,
    fetch_retrieval_context,
)
from deepdive.services.ai.templates import PromptLibrary, normalize_template, render_template
from deepdive.services.ai.usage import UsageMetrics, compute_usage_cost
from deepdive.services.ai.validation import (
    ValidationResult,
    parse_json_payload,
    validate_stage3_question,
    validate_stage3_summary,
)


__all__ = [
    "CompletionResult",
    "Credential",
    "EMPTY_RETRIEVAL",
    "EMPTY_RETRIEVAL_TEXT",
    "ModelProfile",
    "PromptLibrary",
    "RequestSettings",
    "RetrievalContext",
    "RetrySettings",
    "StageModelPlan",
    "UsageMetrics",
    "ValidationResult",
    "apply_request_settings",
    "build_cache_key",
    "build_provider_headers",
    "build_retrieval_query",
    "cached_chat_completion",
    "chat_completion",
    "close_client_pool",
    "compute_usage_cost",
    "create_embedding",
    "fetch_retrieval_context",
    "get_client_pool",
    "hash_request_body",
    "normalize_template",
    "parse_json_payload",
    "render_template",
    "resolve_base_url",
    "resolve_cache_ttl_minutes",
    "resolve_credential",
    "resolve_model",
    "resolve_stage3_plan",
    "stable_stringify",
    "validate_stage3_question",
    "validate_stage3_summary",
]
