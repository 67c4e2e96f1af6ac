"""Stage 3 deep-dive endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from deepdive.api.dependencies import Caller, require_service_or_admin
from deepdive.core.logging import get_logger
from deepdive.schemas.stage3 import Stage3ConsumeRequest, Stage3ConsumeResponse
from deepdive.services.deep_dive import consume_stage3


router = APIRouter(prefix="/stage3")

logger = get_logger("api.stage3")


@router.post(
    "/consume",
    response_model=Stage3ConsumeResponse,
    summary="Process Stage 3 finalists",
    description=(
        "Run the deep dive for the next batch of go-deep finalists of a run. "
        "Requires the automation secret or an admin bearer token."
    ),
)
async def consume(
    payload: Stage3ConsumeRequest,
    caller: Caller = Depends(require_service_or_admin),
) -> Stage3ConsumeResponse:
    """Process up to ``limit`` finalists and report batch metrics."""
    logger.info(
        "Stage 3 consume",
        extra={"run_id": payload.run_id, "caller": caller.kind, "subject": caller.subject},
    )
    result = await consume_stage3(payload.run_id, payload.limit, payload.client_meta)
    return Stage3ConsumeResponse.model_validate(result)
