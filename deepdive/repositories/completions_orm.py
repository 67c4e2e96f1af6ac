"""Cached completions repository using SQLAlchemy ORM.

Rows are keyed by (model_slug, cache_key). Expired rows are removed
lazily by the reader; there is no background sweeper.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert

from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session
from deepdive.database.orm import CachedCompletion


logger = get_logger("repositories.completions_orm")


def _to_dict(row: CachedCompletion) -> dict[str, Any]:
    return {
        "id": row.id,
        "model_slug": row.model_slug,
        "cache_key": row.cache_key,
        "prompt_hash": row.prompt_hash,
        "request_body": row.request_body,
        "response_body": row.response_body,
        "usage": row.usage or {},
        "context": row.context or {},
        "expires_at": row.expires_at,
        "hit_count": row.hit_count,
        "last_hit_at": row.last_hit_at,
    }


async def get_cached_completion(model_slug: str, cache_key: str) -> dict[str, Any] | None:
    """Fetch a cache row regardless of expiry."""
    async with get_session() as session:
        result = await session.execute(
            select(CachedCompletion).where(
                CachedCompletion.model_slug == model_slug,
                CachedCompletion.cache_key == cache_key,
            )
        )
        row = result.scalar_one_or_none()
        return _to_dict(row) if row else None


async def delete_cached_completion(row_id: int) -> None:
    """Delete one cache row (used for lazy expiry)."""
    async with get_session() as session:
        await session.execute(delete(CachedCompletion).where(CachedCompletion.id == row_id))
        await session.commit()


async def mark_cache_hit(row_id: int) -> None:
    """Record a cache hit. The counter is incremented in SQL so concurrent hits all count."""
    async with get_session() as session:
        await session.execute(
            update(CachedCompletion)
            .where(CachedCompletion.id == row_id)
            .values(
                hit_count=CachedCompletion.hit_count + 1,
                last_hit_at=datetime.now(UTC),
            )
        )
        await session.commit()


async def upsert_cached_completion(
    model_slug: str,
    cache_key: str,
    prompt_hash: str,
    request_body: dict[str, Any],
    response_body: dict[str, Any],
    usage: dict[str, Any] | None,
    context: dict[str, Any] | None,
    expires_at: datetime | None,
) -> None:
    """Insert or replace a cache row; replacing resets the hit counter."""
    now = datetime.now(UTC)
    stmt = insert(CachedCompletion).values(
        model_slug=model_slug,
        cache_key=cache_key,
        prompt_hash=prompt_hash,
        request_body=request_body,
        response_body=response_body,
        usage=usage or {},
        context=context or {},
        expires_at=expires_at,
        hit_count=0,
        last_hit_at=None,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["model_slug", "cache_key"],
        set_={
            "prompt_hash": stmt.excluded.prompt_hash,
            "request_body": stmt.excluded.request_body,
            "response_body": stmt.excluded.response_body,
            "usage": stmt.excluded.usage,
            "context": stmt.excluded.context,
            "expires_at": stmt.excluded.expires_at,
            "hit_count": 0,
            "last_hit_at": None,
            "updated_at": now,
        },
    )

    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()
