"""Document chunk search over the pgvector index.

The datastore owns ``match_doc_chunks``; the embedding is sent as its text
literal and cast server-side so asyncpg needs no vector codec.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import text

from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session


logger = get_logger("repositories.documents")


def _vector_literal(embedding: list[float]) -> str:
    return "[" + ",".join(repr(float(v)) for v in embedding) + "]"


async def match_doc_chunks(
    query_embedding: list[float], ticker: str, match_limit: int
) -> list[dict[str, Any]]:
    """Nearest document chunks for a ticker, most similar first."""
    statement = text(
        "SELECT * FROM match_doc_chunks("
        "query_embedding => CAST(:query_embedding AS vector), "
        "query_ticker => :query_ticker, "
        "match_limit => :match_limit)"
    )
    async with get_session() as session:
        result = await session.execute(
            statement,
            {
                "query_embedding": _vector_literal(query_embedding),
                "query_ticker": ticker,
                "match_limit": match_limit,
            },
        )
        return [dict(row) for row in result.mappings().all()]
