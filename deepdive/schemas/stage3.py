"""Stage 3 deep-dive request/response schemas."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Stage3ConsumeRequest(BaseModel):
    """Request to process the next batch of Stage 3 finalists."""

    run_id: str = Field(..., description="Run UUID")
    limit: Optional[Any] = Field(
        default=None, description="Finalists to process (clamped to 1-6, default 2)"
    )
    client_meta: Optional[Dict[str, Any]] = Field(
        default=None, description="Caller context, logged only"
    )


class Stage3Metrics(BaseModel):
    """Stage 3 progress counters for a run."""

    finalists: int = 0
    pending: int = 0
    completed: int = 0
    failed: int = 0
    spend: float = Field(default=0.0, description="Stage 3 spend in USD")


class RetrievalStats(BaseModel):
    """Retrieval usage for one ticker."""

    hits: int = 0
    embedding_tokens: int = 0


class RetrievalTotals(BaseModel):
    """Retrieval usage across the batch."""

    total_hits: int = 0
    embedding_tokens: int = 0


class Stage3Result(BaseModel):
    """Outcome for one finalist."""

    ticker: str
    verdict: Optional[str] = None
    summary: Optional[str] = None
    updated_at: str
    status: str = Field(..., examples=["ok", "failed"])
    retrieval: Optional[RetrievalStats] = None
    cache_hit: Optional[bool] = None


class Stage3ConsumeResponse(BaseModel):
    """Batch result of ``POST /stage3/consume``."""

    run_id: str
    processed: int
    failed: int
    model: str
    metrics: Stage3Metrics
    results: List[Stage3Result] = Field(default_factory=list)
    message: str
    cache_hits: int = 0
    retrieval: RetrievalTotals = Field(default_factory=RetrievalTotals)
