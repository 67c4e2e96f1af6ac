"""
Provider client pool and retrying chat/embedding calls.

All providers speak the OpenAI wire format, so every call goes through
``AsyncOpenAI`` with a provider-specific base URL and headers. A single
pooled ``httpx.AsyncClient`` is shared by every provider client.

Retries are owned by tenacity and apply only to transient failures
(transport errors, timeouts, rate limits, 5xx); the SDK's own retry loop
is disabled.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from deepdive.core.config import settings
from deepdive.core.exceptions import UpstreamError
from deepdive.core.logging import get_logger

from .config import RetrySettings
from .resolver import Credential, ModelProfile, build_provider_headers, resolve_base_url


logger = get_logger("ai.client")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

# Keys the chat completions endpoint accepts directly; anything else is
# forwarded in the request body via extra_body.
CHAT_PARAMS = frozenset({
    "messages",
    "temperature",
    "top_p",
    "presence_penalty",
    "frequency_penalty",
    "max_tokens",
    "max_completion_tokens",
    "stop",
    "response_format",
    "seed",
    "metadata",
    "user",
    "n",
})


class ProviderClientPool:
    """
    Caches one ``AsyncOpenAI`` client per (base URL, credential, headers).

    Usage:
        pool = await get_client_pool()
        client = await pool.get_client(model, credential)
    """

    def __init__(self) -> None:
        self._clients: dict[tuple[str, str, tuple[tuple[str, str], ...]], AsyncOpenAI] = {}
        self._http_client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                limits=httpx.Limits(
                    max_connections=settings.max_connections,
                    max_keepalive_connections=max(1, settings.max_connections // 2),
                ),
                timeout=httpx.Timeout(float(settings.external_api_timeout), connect=10.0),
            )
        return self._http_client

    async def get_client(self, model: ModelProfile, credential: Credential) -> AsyncOpenAI:
        base_url = resolve_base_url(model, credential)
        headers = build_provider_headers(model, credential)
        key = (base_url, credential.id, tuple(sorted(headers.items())))

        async with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = AsyncOpenAI(
                    api_key=credential.api_key,
                    base_url=base_url,
                    default_headers=headers or None,
                    http_client=self._ensure_http_client(),
                    max_retries=0,
                )
                self._clients[key] = client
                logger.debug(
                    "Created provider client",
                    extra={"provider": model.provider, "base_url": base_url},
                )
            return client

    async def close(self) -> None:
        async with self._lock:
            self._clients.clear()
            if self._http_client is not None:
                await self._http_client.aclose()
                self._http_client = None


_pool: ProviderClientPool | None = None


async def get_client_pool() -> ProviderClientPool:
    """Get or create the global provider client pool."""
    global _pool
    if _pool is None:
        _pool = ProviderClientPool()
    return _pool


async def close_client_pool() -> None:
    """Close pooled connections (application shutdown)."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


# =============================================================================
# RETRY
# =============================================================================


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Transient upstream failure, retrying",
        extra={
            "attempt": state.attempt_number,
            "error": str(error) if error else None,
            "error_type": type(error).__name__ if error else None,
        },
    )


def _retrying(retry: RetrySettings) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(retry.attempts),
        wait=wait_fixed(retry.backoff_ms / 1000) + wait_random(0, retry.jitter / 1000),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_log_retry,
        reraise=True,
    )


def _upstream_error(action: str, model: ModelProfile, error: Exception, attempts: int) -> UpstreamError:
    status_code = getattr(error, "status_code", None)
    return UpstreamError(
        message=f"{action} failed for model {model.slug}: {error}",
        details={
            "model": model.slug,
            "provider": model.provider,
            "attempts": attempts,
            **({"upstream_status": status_code} if status_code else {}),
        },
    )


def split_chat_body(body: dict[str, Any]) -> dict[str, Any]:
    """Split a loose chat body into SDK keyword arguments and ``extra_body``."""
    kwargs: dict[str, Any] = {}
    extra: dict[str, Any] = dict(body.get("extra_body") or {})
    for key, value in body.items():
        if key in ("model", "extra_body"):
            continue
        if key in CHAT_PARAMS:
            kwargs[key] = value
        else:
            extra[key] = value
    if extra:
        kwargs["extra_body"] = extra
    return kwargs


# =============================================================================
# CALLS
# =============================================================================


async def chat_completion(
    model: ModelProfile,
    credential: Credential,
    body: dict[str, Any],
    retry: RetrySettings,
) -> dict[str, Any]:
    """
    Run a chat completion and return the raw response as a dict.

    Raises:
        UpstreamError: Non-transient provider error, or transient errors
            exhausted the retry budget
    """
    pool = await get_client_pool()
    client = await pool.get_client(model, credential)
    kwargs = split_chat_body(body)

    attempts = 0
    try:
        async for attempt in _retrying(retry):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                response = await client.chat.completions.create(
                    model=model.model_name, **kwargs
                )
    except (openai.OpenAIError, httpx.HTTPError) as e:
        raise _upstream_error("Chat completion", model, e, attempts) from e

    return response.model_dump(mode="json", exclude_none=True)


async def create_embedding(
    model: ModelProfile,
    credential: Credential,
    text: str,
    retry: RetrySettings,
) -> tuple[list[float] | None, dict[str, Any]]:
    """
    Embed one text.

    Returns:
        Tuple of (vector or None when the provider returned none, usage dict)
    """
    pool = await get_client_pool()
    client = await pool.get_client(model, credential)

    attempts = 0
    try:
        async for attempt in _retrying(retry):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                response = await client.embeddings.create(model=model.model_name, input=text)
    except (openai.OpenAIError, httpx.HTTPError) as e:
        raise _upstream_error("Embedding", model, e, attempts) from e

    usage = response.usage.model_dump(mode="json") if response.usage else {}
    if not response.data:
        return None, usage
    vector = list(response.data[0].embedding or [])
    return (vector or None), usage
