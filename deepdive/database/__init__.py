"""Database module: SQLAlchemy async engine, sessions and ORM models."""

from .connection import (
    call_procedure,
    close_sqlalchemy_engine,
    db_healthcheck,
    get_async_database_url,
    get_engine,
    get_session,
    init_sqlalchemy_engine,
)
from .orm import (
    AIModelProfile,
    APICredential,
    AnalysisDimension,
    AnalysisDimensionScore,
    AnalysisQuestion,
    AnalysisQuestionResult,
    Answer,
    Base,
    CachedCompletion,
    CostLedgerEntry,
    DimensionFactorLink,
    ErrorLog,
    NotificationChannel,
    NotificationEvent,
    Run,
    RunItem,
    ScoringFactor,
    Ticker,
    TickerFactorSnapshot,
)


__all__ = [
    "AIModelProfile",
    "APICredential",
    "AnalysisDimension",
    "AnalysisDimensionScore",
    "AnalysisQuestion",
    "AnalysisQuestionResult",
    "Answer",
    "Base",
    "CachedCompletion",
    "CostLedgerEntry",
    "DimensionFactorLink",
    "ErrorLog",
    "NotificationChannel",
    "NotificationEvent",
    "Run",
    "RunItem",
    "ScoringFactor",
    "Ticker",
    "TickerFactorSnapshot",
    "call_procedure",
    "close_sqlalchemy_engine",
    "db_healthcheck",
    "get_async_database_url",
    "get_engine",
    "get_session",
    "init_sqlalchemy_engine",
]
