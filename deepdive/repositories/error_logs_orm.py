"""Error log repository using SQLAlchemy ORM."""

from __future__ import annotations

import uuid
from typing import Any

from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session
from deepdive.database.orm import ErrorLog


logger = get_logger("repositories.error_logs")


async def insert_error_log(
    context: str,
    message: str,
    run_id: str | None = None,
    ticker: str | None = None,
    stage: int | None = None,
    prompt_id: str | None = None,
    retry_count: int = 0,
    status_code: int | None = None,
    payload: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Insert an error log row and return its id."""
    async with get_session() as session:
        row = ErrorLog(
            context=context,
            message=message,
            run_id=uuid.UUID(run_id) if run_id else None,
            ticker=ticker,
            stage=stage,
            prompt_id=prompt_id,
            retry_count=retry_count,
            status_code=status_code,
            payload=payload,
            metadata_=metadata,
        )
        session.add(row)
        await session.commit()
        await session.refresh(row)
        return row.id
