"""Stage answers and deep-dive outcome repository using SQLAlchemy ORM.

Answers are append-only; question results and dimension scores are keyed
per (run, ticker, question|dimension) so replays overwrite instead of
duplicating.

Usage:
    from deepdive.repositories import answers_orm as answers_repo

    stage1 = await answers_repo.get_latest_stage_answer(run_id, "AAPL", stage=1)
    await answers_repo.upsert_question_result(run_id, "AAPL", outcome)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session
from deepdive.database.orm import Answer, AnalysisDimensionScore, AnalysisQuestionResult


logger = get_logger("repositories.answers_orm")


def _decimal(value: float | None, places: int = 6) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(round(float(value), places)))


# =============================================================================
# ANSWERS
# =============================================================================


async def get_latest_stage_answer(run_id: str, ticker: str, stage: int) -> dict[str, Any] | None:
    """Most recent stored answer JSON for a ticker at a given stage."""
    async with get_session() as session:
        result = await session.execute(
            select(Answer.answer_json)
            .where(
                Answer.run_id == uuid.UUID(run_id),
                Answer.ticker == ticker,
                Answer.stage == stage,
            )
            .order_by(Answer.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


async def insert_answer(
    run_id: str,
    ticker: str,
    stage: int,
    question_group: str,
    answer_json: dict[str, Any],
    answer_text: str | None = None,
    tokens_in: int = 0,
    tokens_out: int = 0,
    cost_usd: float = 0.0,
) -> int:
    """Append an answer row and return its id."""
    async with get_session() as session:
        answer = Answer(
            run_id=uuid.UUID(run_id),
            ticker=ticker,
            stage=stage,
            question_group=question_group,
            answer_json=answer_json,
            answer_text=answer_text,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=_decimal(cost_usd) or Decimal("0"),
        )
        session.add(answer)
        await session.commit()
        await session.refresh(answer)
        return answer.id


# =============================================================================
# QUESTION RESULTS & DIMENSION SCORES
# =============================================================================


async def upsert_question_result(run_id: str, ticker: str, outcome: dict[str, Any]) -> None:
    """Insert or overwrite the outcome of one question for a ticker.

    Args:
        run_id: Run UUID
        ticker: Ticker symbol
        outcome: Question outcome with question_id, question_slug,
            dimension_id, verdict, score, weight, summary, tags, answer,
            citations, tokens_in, tokens_out, cost_usd, cache_hit, retrieval
    """
    values = {
        "run_id": uuid.UUID(run_id),
        "ticker": ticker,
        "question_id": uuid.UUID(outcome["question_id"]),
        "question_slug": outcome["question_slug"],
        "dimension_id": uuid.UUID(outcome["dimension_id"]),
        "verdict": outcome["verdict"],
        "score": _decimal(outcome.get("score"), 2),
        "weight": _decimal(outcome.get("weight", 1.0), 4),
        "summary": outcome.get("summary"),
        "tags": list(outcome.get("tags") or []),
        "answer": outcome.get("answer"),
        "citations": list(outcome.get("citations") or []),
        "retrieval": list(outcome.get("retrieval") or []),
        "tokens_in": int(outcome.get("tokens_in") or 0),
        "tokens_out": int(outcome.get("tokens_out") or 0),
        "cost_usd": _decimal(outcome.get("cost_usd") or 0.0),
        "cache_hit": bool(outcome.get("cache_hit")),
    }
    stmt = insert(AnalysisQuestionResult).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["run_id", "ticker", "question_id"],
        set_={
            key: stmt.excluded[key]
            for key in values
            if key not in ("run_id", "ticker", "question_id")
        }
        | {"updated_at": datetime.now(UTC)},
    )

    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()


async def upsert_dimension_score(run_id: str, ticker: str, summary: dict[str, Any]) -> None:
    """Insert or overwrite the ensemble summary of one dimension for a ticker."""
    values = {
        "run_id": uuid.UUID(run_id),
        "ticker": ticker,
        "dimension_id": uuid.UUID(summary["dimension_id"]),
        "verdict": summary["verdict"],
        "score": _decimal(summary.get("score"), 2),
        "weight": _decimal(summary.get("weight", 1.0), 4),
        "color": summary.get("color"),
        "summary": summary.get("summary"),
        "tags": list(summary.get("tags") or []),
        "llm_score": _decimal(summary.get("llm_score"), 2),
        "llm_weight": _decimal(summary.get("llm_weight") or 0.0, 4),
        "factor_score": _decimal(summary.get("factor_score"), 2),
        "factor_weight": _decimal(summary.get("factor_weight") or 0.0, 4),
        "factor_breakdown": list(summary.get("factor_breakdown") or []),
        "ensemble_score": _decimal(summary.get("ensemble_score"), 2),
        "details": summary.get("details") or {},
    }
    stmt = insert(AnalysisDimensionScore).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["run_id", "ticker", "dimension_id"],
        set_={
            key: stmt.excluded[key]
            for key in values
            if key not in ("run_id", "ticker", "dimension_id")
        }
        | {"updated_at": datetime.now(UTC)},
    )

    async with get_session() as session:
        await session.execute(stmt)
        await session.commit()
