"""
Content-addressed completion cache.

A request body is canonicalized and hashed; the hash is the last segment of
the cache key, so any change to the prompt, model or request settings
produces a new key. Hits are free: they carry zero cost and never reach the
cost ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from deepdive.core.logging import get_logger
from deepdive.repositories import completions_orm

from .canonical import build_cache_key, hash_request_body
from .client import chat_completion
from .config import RetrySettings, resolve_cache_ttl_minutes
from .resolver import Credential, ModelProfile
from .usage import UsageMetrics, compute_usage_cost, estimate_usage


logger = get_logger("ai.cache")


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a (possibly cached) chat completion."""
    content: str
    usage: UsageMetrics
    cache_hit: bool
    cache_key: str
    prompt_hash: str
    model_slug: str
    response: dict[str, Any] = field(default_factory=dict, repr=False)


def extract_message_content(response: dict[str, Any]) -> str:
    """First choice message text of a chat completion payload."""
    choices = response.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        return "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )
    return content or ""


async def _lookup(model_slug: str, cache_key: str) -> dict[str, Any] | None:
    row = await completions_orm.get_cached_completion(model_slug, cache_key)
    if row is None:
        return None

    expires_at = row.get("expires_at")
    if expires_at is not None and expires_at < datetime.now(UTC):
        await completions_orm.delete_cached_completion(row["id"])
        logger.debug("Evicted expired cache entry", extra={"cache_key": cache_key})
        return None

    await completions_orm.mark_cache_hit(row["id"])
    return row


async def cached_chat_completion(
    *,
    model: ModelProfile,
    credential: Credential,
    body: dict[str, Any],
    key_parts: Sequence[str],
    retry: RetrySettings,
    scope: str = "stage3",
    context: dict[str, Any] | None = None,
    should_store: Callable[[str], bool] | None = None,
) -> CompletionResult:
    """
    Run a chat completion through the cache.

    Args:
        model: Resolved model profile (its slug scopes the cache)
        credential: Provider credential for misses
        body: Chat body without the model field
        key_parts: Leading cache-key segments, e.g. ``["stage3", "AAPL", "summary"]``
        retry: Retry policy for misses
        scope: TTL scope (``<SCOPE>_CACHE_TTL_MINUTES``)
        context: Extra provenance stored with the cache row
        should_store: Predicate on the response text; responses it rejects
            are returned but not cached

    Returns:
        CompletionResult with ``cache_hit`` set on hits

    Cache read/write failures are logged and the call proceeds uncached.
    """
    request_body = {**body, "model": model.model_name}
    prompt_hash = hash_request_body(request_body)
    cache_key = build_cache_key([*key_parts, prompt_hash])

    try:
        cached = await _lookup(model.slug, cache_key)
    except SQLAlchemyError as e:
        logger.warning("Cache lookup failed", extra={"cache_key": cache_key, "error": str(e)})
        cached = None

    if cached is not None:
        stored = cached.get("response_body") or {}
        metrics = compute_usage_cost(model, cached.get("usage"))
        logger.info("Completion cache hit", extra={"cache_key": cache_key, "model": model.slug})
        return CompletionResult(
            content=extract_message_content(stored),
            usage=UsageMetrics(
                prompt_tokens=metrics.prompt_tokens,
                completion_tokens=metrics.completion_tokens,
                cost_usd=0.0,
            ),
            cache_hit=True,
            cache_key=cache_key,
            prompt_hash=prompt_hash,
            model_slug=model.slug,
            response=stored,
        )

    response = await chat_completion(model, credential, body, retry)
    content = extract_message_content(response)
    usage = response.get("usage") or estimate_usage(
        model.model_name, body.get("messages") or [], content
    )
    metrics = compute_usage_cost(model, usage)

    if content and (should_store is None or should_store(content)):
        ttl = resolve_cache_ttl_minutes(scope)
        try:
            await completions_orm.upsert_cached_completion(
                model_slug=model.slug,
                cache_key=cache_key,
                prompt_hash=prompt_hash,
                request_body=request_body,
                response_body=response,
                usage=usage,
                context=context,
                expires_at=datetime.now(UTC) + timedelta(minutes=ttl),
            )
        except SQLAlchemyError as e:
            logger.warning("Cache store failed", extra={"cache_key": cache_key, "error": str(e)})

    return CompletionResult(
        content=content,
        usage=metrics,
        cache_hit=False,
        cache_key=cache_key,
        prompt_hash=prompt_hash,
        model_slug=model.slug,
        response=response,
    )
