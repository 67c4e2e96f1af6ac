"""Pydantic request/response schemas."""

from .common import ErrorResponse, HealthResponse
from .stage3 import (
    RetrievalStats,
    RetrievalTotals,
    Stage3ConsumeRequest,
    Stage3ConsumeResponse,
    Stage3Metrics,
    Stage3Result,
)


__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "RetrievalStats",
    "RetrievalTotals",
    "Stage3ConsumeRequest",
    "Stage3ConsumeResponse",
    "Stage3Metrics",
    "Stage3Result",
]
