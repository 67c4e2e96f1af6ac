"""
Persistent error logging.

Errors worth a human look (invalid model output, upstream failures) are
written to ``error_logs`` with enough context to replay them. Writing the
log must never mask the original failure, so ``log_error`` does not raise.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from deepdive.core.logging import get_logger
from deepdive.repositories import error_logs_orm


logger = get_logger("observability")


def _sanitize_json(value: Any) -> dict[str, Any] | None:
    """Coerce a payload into a JSON object suitable for a JSONB column."""
    if value is None:
        return None
    try:
        data = json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError) as e:
        return {"note": "Failed to serialize payload", "error": str(e)}
    return data if isinstance(data, dict) else {"value": data}


async def log_error(
    context: str,
    message: str,
    *,
    run_id: str | None = None,
    ticker: str | None = None,
    stage: int | None = None,
    prompt_id: str | None = None,
    retry_count: int | None = None,
    status_code: int | None = None,
    payload: Any = None,
    metadata: Any = None,
) -> None:
    """
    Record an error in ``error_logs``.

    Args:
        context: Where the error happened, e.g. ``stage3.question``
        message: Human-readable error message
        run_id: Run UUID
        ticker: Ticker symbol
        stage: Pipeline stage
        prompt_id: Question slug or prompt key
        retry_count: Upstream attempts made
        status_code: Upstream HTTP status
        payload: Raw model output or request excerpt
        metadata: Anything else worth keeping (validation errors, model)
    """
    logger.error(
        message,
        extra={"context": context, "run_id": run_id, "ticker": ticker, "stage": stage},
    )
    try:
        await error_logs_orm.insert_error_log(
            context=context,
            message=message,
            run_id=run_id,
            ticker=ticker,
            stage=stage,
            prompt_id=prompt_id,
            retry_count=max(int(retry_count), 0) if retry_count is not None else 0,
            status_code=status_code,
            payload=_sanitize_json(payload),
            metadata=_sanitize_json(metadata),
        )
    except (SQLAlchemyError, ValueError) as e:
        logger.warning("Failed to record error log", extra={"context": context, "error": str(e)})
