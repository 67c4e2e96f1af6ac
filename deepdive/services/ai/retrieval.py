"""
Retrieval-augmented context for deep dives.

Builds a plain-text query from ticker facts and earlier stage answers,
embeds it, and pulls the nearest document chunks for the ticker. Any
failure on this path degrades to an empty result; retrieval never fails a
batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from deepdive.core.config import settings
from deepdive.core.exceptions import AppException
from deepdive.core.logging import get_logger
from deepdive.repositories import documents_orm

from .client import create_embedding
from .config import RetrySettings
from .resolver import resolve_credential, resolve_model


logger = get_logger("ai.retrieval")

EMPTY_RETRIEVAL_TEXT = "No external excerpts supplied."
MAX_QUERY_CHARS = 6000
MAX_MATCH_LIMIT = 20


@dataclass(frozen=True)
class RetrievedSnippet:
    ref: str
    chunk: str
    source_type: str | None = None
    title: str | None = None
    published_at: str | None = None
    source_url: str | None = None
    similarity: float | None = None
    token_length: int = 0

    def citation(self) -> dict[str, Any]:
        return {
            "ref": self.ref,
            "title": self.title,
            "source_type": self.source_type,
            "published_at": self.published_at,
            "source_url": self.source_url,
            "similarity": self.similarity,
        }


@dataclass(frozen=True)
class RetrievalContext:
    """Snippets, citations and the prompt-ready text block."""
    snippets: list[RetrievedSnippet] = field(default_factory=list)
    embedding_tokens: int = 0

    @property
    def hits(self) -> int:
        return len(self.snippets)

    @property
    def citations(self) -> list[dict[str, Any]]:
        return [s.citation() for s in self.snippets]

    @property
    def text(self) -> str:
        if not self.snippets:
            return EMPTY_RETRIEVAL_TEXT
        return "\n\n".join(f"[{s.ref}] {s.chunk}" for s in self.snippets)


EMPTY_RETRIEVAL = RetrievalContext()


def build_retrieval_query(
    ticker: str,
    meta: dict[str, Any] | None,
    stage1: dict[str, Any] | None,
    stage2: dict[str, Any] | None,
) -> str:
    """Compose the embedding query from ticker facts and prior stage answers."""
    meta = meta or {}
    lines = [f"Ticker: {ticker}"]
    for key, label in (
        ("name", "Name"),
        ("exchange", "Exchange"),
        ("country", "Country"),
        ("sector", "Sector"),
        ("industry", "Industry"),
    ):
        if meta.get(key):
            lines.append(f"{label}: {meta[key]}")

    if stage1:
        if stage1.get("summary"):
            lines.append(f"Stage 1 summary: {stage1['summary']}")
        reasons = stage1.get("reasons")
        if isinstance(reasons, list) and reasons:
            lines.append("Stage 1 reasons: " + "; ".join(str(r) for r in reasons[:3]))

    if stage2:
        verdict = stage2.get("verdict")
        if isinstance(verdict, dict) and isinstance(verdict.get("summary"), str):
            lines.append(f"Stage 2 verdict: {verdict['summary']}")
        steps = stage2.get("next_steps")
        if isinstance(steps, list) and steps:
            lines.append("Stage 2 next steps: " + "; ".join(str(s) for s in steps[:3]))

    return "\n".join(lines)


def _truncate(text: str, limit: int) -> str:
    return f"{text[:limit]}…" if len(text) > limit else text


def _to_snippet(index: int, row: dict[str, Any], snippet_chars: int) -> RetrievedSnippet:
    published = row.get("published_at")
    similarity = row.get("similarity")
    return RetrievedSnippet(
        ref=f"D{index + 1}",
        chunk=_truncate(str(row.get("chunk") or "").strip(), snippet_chars),
        source_type=row.get("source_type") or row.get("source"),
        title=row.get("title"),
        published_at=published.isoformat() if hasattr(published, "isoformat") else published,
        source_url=row.get("source_url"),
        similarity=float(similarity) if similarity is not None else None,
        token_length=int(row.get("token_length") or 0),
    )


async def fetch_retrieval_context(
    ticker: str,
    query: str,
    *,
    embedding_model: str | None,
    credential_id: str | None = None,
    retry: RetrySettings | None = None,
    match_limit: int | None = None,
) -> RetrievalContext:
    """
    Embed ``query`` and fetch the nearest document chunks for ``ticker``.

    Returns ``EMPTY_RETRIEVAL`` when the embedding model or credential is
    missing, the provider returns no vector, or the search fails.
    """
    if not query.strip() or not embedding_model:
        return EMPTY_RETRIEVAL

    limit = max(1, min(int(match_limit or settings.retrieval_match_limit), MAX_MATCH_LIMIT))

    try:
        model = await resolve_model(embedding_model)
        credential = await resolve_credential(model.provider, credential_id=credential_id)
        vector, usage = await create_embedding(
            model, credential, query[:MAX_QUERY_CHARS], retry or RetrySettings()
        )
        if not vector:
            logger.info("Embedding returned no vector", extra={"ticker": ticker})
            return EMPTY_RETRIEVAL
        rows = await documents_orm.match_doc_chunks(vector, ticker, limit)
    except (AppException, SQLAlchemyError) as e:
        logger.warning(
            "Retrieval unavailable, continuing without excerpts",
            extra={"ticker": ticker, "error": str(e)},
        )
        return EMPTY_RETRIEVAL

    snippets = [
        _to_snippet(i, row, settings.retrieval_snippet_chars) for i, row in enumerate(rows)
    ]
    return RetrievalContext(
        snippets=snippets,
        embedding_tokens=int(usage.get("total_tokens") or 0),
    )
