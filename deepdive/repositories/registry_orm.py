"""Question/dimension registry and factor repository using SQLAlchemy ORM.

The registry is admin-edited elsewhere; everything here is read-only.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session
from deepdive.database.orm import (
    AnalysisDimension,
    AnalysisQuestion,
    DimensionFactorLink,
    Ticker,
    TickerFactorSnapshot,
)


logger = get_logger("repositories.registry_orm")


def _num(value: Any) -> float | None:
    return float(value) if value is not None else None


def _dimension_to_dict(dimension: AnalysisDimension) -> dict[str, Any]:
    return {
        "id": str(dimension.id),
        "slug": dimension.slug,
        "name": dimension.name,
        "weight": _num(dimension.weight),
        "order_index": dimension.order_index,
        "color_bad": dimension.color_bad,
        "color_neutral": dimension.color_neutral,
        "color_good": dimension.color_good,
    }


async def list_stage_questions(stage: int = 3) -> list[dict[str, Any]]:
    """Active questions for a stage in registry order (dimension order, then question order)."""
    async with get_session() as session:
        result = await session.execute(
            select(AnalysisQuestion)
            .join(AnalysisQuestion.dimension)
            .options(selectinload(AnalysisQuestion.dimension))
            .where(
                AnalysisQuestion.stage == stage,
                AnalysisQuestion.is_active.is_(True),
                AnalysisDimension.is_active.is_(True),
            )
            .order_by(
                AnalysisDimension.order_index,
                AnalysisQuestion.order_index,
                AnalysisQuestion.slug,
            )
        )
        return [
            {
                "id": str(q.id),
                "slug": q.slug,
                "title": q.title,
                "prompt": q.prompt,
                "guidance": q.guidance,
                "weight": _num(q.weight),
                "answer_schema": q.answer_schema or {},
                "depends_on": list(q.depends_on or []),
                "tags": list(q.tags or []),
                "order_index": q.order_index,
                "dimension": _dimension_to_dict(q.dimension),
            }
            for q in result.scalars().all()
        ]


async def load_dimension_factor_links() -> dict[str, list[dict[str, Any]]]:
    """Factor links grouped by dimension id."""
    async with get_session() as session:
        result = await session.execute(select(DimensionFactorLink))
        links: dict[str, list[dict[str, Any]]] = {}
        for link in result.unique().scalars().all():
            factor = link.factor
            if factor is None:
                continue
            links.setdefault(str(link.dimension_id), []).append(
                {
                    "dimension_id": str(link.dimension_id),
                    "weight": _num(link.weight),
                    "factor": {
                        "id": str(factor.id),
                        "slug": factor.slug,
                        "name": factor.name,
                        "direction": factor.direction or "higher_better",
                        "scale_min": _num(factor.scale_min),
                        "scale_max": _num(factor.scale_max),
                        "weight": _num(factor.weight) if factor.weight is not None else 1.0,
                        "metadata": dict(factor.metadata_ or {}),
                    },
                }
            )
        return links


async def load_ticker_factor_snapshots(ticker: str) -> dict[str, dict[str, Any]]:
    """Latest factor snapshots for a ticker keyed by factor id."""
    async with get_session() as session:
        result = await session.execute(
            select(TickerFactorSnapshot).where(TickerFactorSnapshot.ticker == ticker)
        )
        return {
            str(row.factor_id): {
                "factor_id": str(row.factor_id),
                "value": _num(row.value),
                "score": _num(row.score),
                "as_of": row.as_of.isoformat() if row.as_of else None,
                "source": row.source,
                "notes": row.notes,
                "metadata": dict(row.metadata_ or {}),
            }
            for row in result.scalars().all()
        }


async def get_ticker_meta(ticker: str) -> dict[str, Any]:
    """Ticker reference data; empty dict when unknown."""
    async with get_session() as session:
        row = await session.get(Ticker, ticker)
        if row is None:
            return {}
        return {
            "name": row.name,
            "exchange": row.exchange,
            "country": row.country,
            "sector": row.sector,
            "industry": row.industry,
        }
