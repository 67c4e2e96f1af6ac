"""Runs and run-item repository using SQLAlchemy ORM.

Run rows are created by the external planner; this module reads them and
advances per-ticker item state.

Usage:
    from deepdive.repositories import runs_orm as runs_repo

    run = await runs_repo.get_run(run_id)
    claimed = await runs_repo.claim_run_item(run_id, "AAPL", stage=3)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update

from deepdive.core.logging import get_logger
from deepdive.database.connection import call_procedure, get_session
from deepdive.database.orm import Run, RunItem


logger = get_logger("repositories.runs_orm")


def _run_to_dict(run: Run) -> dict[str, Any]:
    return {
        "id": str(run.id),
        "status": run.status,
        "stop_requested": bool(run.stop_requested),
        "notes": run.notes or {},
        "label": run.label,
        "watchlist_id": str(run.watchlist_id) if run.watchlist_id else None,
    }


def _item_to_dict(item: RunItem) -> dict[str, Any]:
    return {
        "ticker": item.ticker,
        "stage": item.stage,
        "status": item.status,
        "stage2_go_deep": bool(item.stage2_go_deep),
        "spend_est_usd": float(item.spend_est_usd or 0),
        "updated_at": item.updated_at,
    }


async def get_run(run_id: str) -> dict[str, Any] | None:
    """Get a run by id.

    Returns:
        Run dict or None if not found
    """
    async with get_session() as session:
        run = await session.get(Run, uuid.UUID(run_id))
        return _run_to_dict(run) if run else None


async def list_stage3_candidates(run_id: str, limit: int) -> list[dict[str, Any]]:
    """List finalists waiting for a deep dive, oldest update first.

    A finalist passed Stage 2 with go-deep set and has not reached Stage 3.
    """
    async with get_session() as session:
        result = await session.execute(
            select(RunItem)
            .where(
                RunItem.run_id == uuid.UUID(run_id),
                RunItem.status == "ok",
                RunItem.stage2_go_deep.is_(True),
                RunItem.stage < 3,
            )
            .order_by(RunItem.updated_at.asc())
            .limit(limit)
        )
        return [_item_to_dict(item) for item in result.scalars().all()]


async def claim_run_item(run_id: str, ticker: str, stage: int) -> bool:
    """Atomically move an item from ``ok`` to ``in_progress``.

    Returns:
        True if this caller owns the item, False if another invocation
        claimed it first or it no longer qualifies.
    """
    async with get_session() as session:
        result = await session.execute(
            update(RunItem)
            .where(
                RunItem.run_id == uuid.UUID(run_id),
                RunItem.ticker == ticker,
                RunItem.status == "ok",
                RunItem.stage < stage,
            )
            .values(status="in_progress", updated_at=datetime.now(UTC))
        )
        await session.commit()
        return result.rowcount == 1


async def complete_run_item(
    run_id: str, ticker: str, stage: int, spend_delta: float
) -> None:
    """Advance a claimed item to ``stage`` with status ok and add its spend."""
    async with get_session() as session:
        await session.execute(
            update(RunItem)
            .where(RunItem.run_id == uuid.UUID(run_id), RunItem.ticker == ticker)
            .values(
                stage=stage,
                status="ok",
                spend_est_usd=RunItem.spend_est_usd + Decimal(str(round(spend_delta, 6))),
                updated_at=datetime.now(UTC),
            )
        )
        await session.commit()


async def fail_run_item(run_id: str, ticker: str, spend_delta: float = 0.0) -> None:
    """Mark an item failed in place, keeping its current stage."""
    async with get_session() as session:
        await session.execute(
            update(RunItem)
            .where(RunItem.run_id == uuid.UUID(run_id), RunItem.ticker == ticker)
            .values(
                status="failed",
                spend_est_usd=RunItem.spend_est_usd + Decimal(str(round(spend_delta, 6))),
                updated_at=datetime.now(UTC),
            )
        )
        await session.commit()


async def get_stage3_metrics(run_id: str) -> dict[str, int]:
    """Stage 3 counters from the ``run_stage3_summary`` procedure."""
    row = await call_procedure("run_stage3_summary", {"p_run_id": run_id}, single=True) or {}
    return {
        "finalists": int(row.get("total_finalists") or row.get("finalists") or 0),
        "pending": int(row.get("pending") or 0),
        "completed": int(row.get("completed") or 0),
        "failed": int(row.get("failed") or 0),
    }


async def get_stage_spend(run_id: str, stage: int) -> float:
    """Sum of ``run_cost_breakdown`` rows for one stage."""
    rows = await call_procedure("run_cost_breakdown", {"p_run_id": run_id}) or []
    return round(
        sum(float(row.get("cost_usd") or 0) for row in rows if int(row.get("stage") or -1) == stage),
        6,
    )
