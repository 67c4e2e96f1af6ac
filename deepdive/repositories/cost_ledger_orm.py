"""Cost ledger repository using SQLAlchemy ORM.

One row per billable model call. Cache hits cost nothing and are never
recorded here.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session
from deepdive.database.orm import CostLedgerEntry


logger = get_logger("repositories.cost_ledger")


async def record_cost(
    run_id: str,
    stage: int,
    model: str,
    tokens_in: int,
    tokens_out: int,
    cost_usd: float,
    ticker: str | None = None,
) -> int:
    """Record a ledger entry and return its id."""
    async with get_session() as session:
        entry = CostLedgerEntry(
            run_id=uuid.UUID(run_id),
            ticker=ticker,
            stage=stage,
            model=model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=Decimal(str(round(cost_usd, 6))),
        )
        session.add(entry)
        await session.commit()
        await session.refresh(entry)
        return entry.id
