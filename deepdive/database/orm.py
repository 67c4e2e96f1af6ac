"""SQLAlchemy ORM models for the deep-dive engine.

This module defines all database tables using SQLAlchemy 2.0 ORM style.
Uses async support via asyncpg driver.

Usage:
    from deepdive.database.orm import Run, RunItem
    from deepdive.database.connection import get_session

    async with get_session() as session:
        run = await session.get(Run, run_id)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")
    )


# =============================================================================
# RUNS & PIPELINE STATE
# =============================================================================


class Run(Base):
    """A planner-created research run. Mutated by stage consumers, never deleted here."""
    __tablename__ = "runs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="queued")
    stop_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    notes: Mapped[dict | None] = mapped_column(JSONB)
    label: Mapped[str | None] = mapped_column(String(200))
    watchlist_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items: Mapped[list["RunItem"]] = relationship(back_populates="run", cascade="all, delete-orphan")


class RunItem(Base):
    """Per-ticker pipeline state within a run."""
    __tablename__ = "run_items"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    run_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    stage: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="pending")
    stage2_go_deep: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    spend_est_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    run: Mapped["Run"] = relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint("run_id", "ticker", name="uq_run_items_run_ticker"),
        CheckConstraint("stage BETWEEN 0 AND 3", name="stage_range"),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'ok', 'failed')", name="status_values"
        ),
        Index("idx_run_items_pending", "run_id", "status", "stage", "updated_at"),
    )


class Ticker(Base):
    """Ticker reference metadata."""
    __tablename__ = "tickers"

    ticker: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255))
    exchange: Mapped[str | None] = mapped_column(String(50))
    country: Mapped[str | None] = mapped_column(String(100))
    sector: Mapped[str | None] = mapped_column(String(100))
    industry: Mapped[str | None] = mapped_column(String(200))


class Answer(Base):
    """Append-only record of every stage answer (questions, summary)."""
    __tablename__ = "answers"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    run_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    question_group: Mapped[str | None] = mapped_column(String(120))
    answer_json: Mapped[dict | None] = mapped_column(JSONB)
    answer_text: Mapped[str | None] = mapped_column(Text)
    tokens_in: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    tokens_out: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_answers_run_ticker_stage", "run_id", "ticker", "stage", "created_at"),
    )


class CostLedgerEntry(Base):
    """Token/cost usage per billable model call."""
    __tablename__ = "cost_ledger"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    run_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str | None] = mapped_column(String(20))
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    model: Mapped[str] = mapped_column(String(120), nullable=False)
    tokens_in: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    tokens_out: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_cost_ledger_run_stage", "run_id", "stage"),
    )


# =============================================================================
# QUESTION REGISTRY & OUTCOMES
# =============================================================================


class AnalysisDimension(Base):
    """Scoring dimension grouping related questions."""
    __tablename__ = "analysis_dimensions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    weight: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, server_default=text("1"))
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    color_bad: Mapped[str | None] = mapped_column(String(20))
    color_neutral: Mapped[str | None] = mapped_column(String(20))
    color_good: Mapped[str | None] = mapped_column(String(20))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))

    questions: Mapped[list["AnalysisQuestion"]] = relationship(back_populates="dimension")


class AnalysisQuestion(Base):
    """Admin-edited question definition. Read-only to the engine."""
    __tablename__ = "analysis_questions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    dimension_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("analysis_dimensions.id"), nullable=False)
    stage: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("3"))
    title: Mapped[str | None] = mapped_column(String(200))
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    guidance: Mapped[str | None] = mapped_column(Text)
    weight: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, server_default=text("1"))
    answer_schema: Mapped[dict | None] = mapped_column(JSONB)
    depends_on: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    tags: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))

    dimension: Mapped["AnalysisDimension"] = relationship(back_populates="questions")

    __table_args__ = (
        Index("idx_analysis_questions_stage", "stage", "is_active"),
    )


class AnalysisQuestionResult(Base):
    """One outcome per (run, ticker, question); replays overwrite."""
    __tablename__ = "analysis_question_results"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    run_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    question_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("analysis_questions.id"), nullable=False)
    question_slug: Mapped[str] = mapped_column(String(120), nullable=False)
    dimension_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("analysis_dimensions.id"), nullable=False)
    verdict: Mapped[str] = mapped_column(String(10), nullable=False)
    score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    weight: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, server_default=text("1"))
    summary: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    answer: Mapped[dict | None] = mapped_column(JSONB)
    citations: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    retrieval: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    tokens_in: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    tokens_out: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, server_default=text("0"))
    cache_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("run_id", "ticker", "question_id", name="uq_question_results_run_ticker_question"),
        CheckConstraint("verdict IN ('bad', 'neutral', 'good')", name="verdict_values"),
    )


class AnalysisDimensionScore(Base):
    """Ensemble summary per (run, ticker, dimension); recomputed each invocation."""
    __tablename__ = "analysis_dimension_scores"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    run_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    dimension_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("analysis_dimensions.id"), nullable=False)
    verdict: Mapped[str] = mapped_column(String(10), nullable=False)
    score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    weight: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, server_default=text("1"))
    color: Mapped[str | None] = mapped_column(String(20))
    summary: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    llm_score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    llm_weight: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, server_default=text("0"))
    factor_score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    factor_weight: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, server_default=text("0"))
    factor_breakdown: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    ensemble_score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    details: Mapped[dict | None] = mapped_column(JSONB)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("run_id", "ticker", "dimension_id", name="uq_dimension_scores_run_ticker_dimension"),
    )


# =============================================================================
# QUANTITATIVE FACTORS
# =============================================================================


class ScoringFactor(Base):
    """Deterministic factor definition."""
    __tablename__ = "scoring_factors"

    id: Mapped[uuid.UUID] = _uuid_pk()
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String(60))
    direction: Mapped[str] = mapped_column(String(20), nullable=False, server_default="higher_better")
    scale_min: Mapped[Decimal | None] = mapped_column(Numeric(18, 6))
    scale_max: Mapped[Decimal | None] = mapped_column(Numeric(18, 6))
    weight: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, server_default=text("1"))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB)

    __table_args__ = (
        CheckConstraint("direction IN ('higher_better', 'lower_better')", name="direction_values"),
    )


class DimensionFactorLink(Base):
    """Links a factor into a dimension's ensemble with a link weight."""
    __tablename__ = "dimension_factor_links"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    dimension_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("analysis_dimensions.id", ondelete="CASCADE"), nullable=False)
    factor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("scoring_factors.id", ondelete="CASCADE"), nullable=False)
    weight: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, server_default=text("1"))

    factor: Mapped["ScoringFactor"] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("dimension_id", "factor_id", name="uq_dimension_factor_links_pair"),
    )


class TickerFactorSnapshot(Base):
    """Latest observed factor value/score per ticker."""
    __tablename__ = "ticker_factor_snapshots"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    factor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("scoring_factors.id", ondelete="CASCADE"), nullable=False)
    value: Mapped[Decimal | None] = mapped_column(Numeric(18, 6))
    score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    as_of: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    source: Mapped[str | None] = mapped_column(String(120))
    notes: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB)

    __table_args__ = (
        UniqueConstraint("ticker", "factor_id", name="uq_ticker_factor_snapshots_pair"),
    )


# =============================================================================
# AI MODELS, CREDENTIALS & CACHE
# =============================================================================


class AIModelProfile(Base):
    """Logical model slug mapped to a provider model and pricing."""
    __tablename__ = "ai_model_profiles"

    slug: Mapped[str] = mapped_column(String(80), primary_key=True)
    label: Mapped[str | None] = mapped_column(String(120))
    provider: Mapped[str] = mapped_column(String(40), nullable=False, server_default="openai")
    model_name: Mapped[str] = mapped_column(String(120), nullable=False)
    base_url: Mapped[str | None] = mapped_column(String(255))
    tier: Mapped[str | None] = mapped_column(String(40))
    price_in: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, server_default=text("0"))
    price_out: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False, server_default=text("0"))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))


class APICredential(Base):
    """Provider API key, Fernet-encrypted at rest."""
    __tablename__ = "api_credentials"

    id: Mapped[uuid.UUID] = _uuid_pk()
    provider: Mapped[str] = mapped_column(String(40), nullable=False)
    label: Mapped[str | None] = mapped_column(String(120))
    encrypted_key: Mapped[str] = mapped_column(Text, nullable=False)
    key_hint: Mapped[str | None] = mapped_column(String(20))
    tier: Mapped[str | None] = mapped_column(String(40))
    scopes: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_api_credentials_provider", "provider", "is_active", "updated_at"),
    )


class CachedCompletion(Base):
    """Content-addressed completion cache, evicted lazily on read."""
    __tablename__ = "cached_completions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    model_slug: Mapped[str] = mapped_column(String(80), nullable=False)
    cache_key: Mapped[str] = mapped_column(String(240), nullable=False)
    prompt_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    request_body: Mapped[dict | None] = mapped_column(JSONB)
    response_body: Mapped[dict | None] = mapped_column(JSONB)
    usage: Mapped[dict | None] = mapped_column(JSONB)
    context: Mapped[dict | None] = mapped_column(JSONB)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_hit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("model_slug", "cache_key", name="uq_cached_completions_model_key"),
        Index("idx_cached_completions_expires", "expires_at"),
    )


# =============================================================================
# NOTIFICATIONS & OBSERVABILITY
# =============================================================================


class NotificationChannel(Base):
    """Delivery target for high-conviction alerts."""
    __tablename__ = "notification_channels"

    id: Mapped[uuid.UUID] = _uuid_pk()
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    label: Mapped[str] = mapped_column(String(120), nullable=False)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    min_score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    conviction_levels: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    watchlist_ids: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('email', 'webhook')", name="type_values"),
    )


class NotificationEvent(Base):
    """One row per delivery attempt; also the dedup source of truth."""
    __tablename__ = "notification_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    channel_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("notification_channels.id", ondelete="CASCADE"), nullable=False)
    run_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    stage: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("3"))
    conviction: Mapped[str | None] = mapped_column(String(60))
    verdict: Mapped[str | None] = mapped_column(Text)
    ensemble_score: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    payload: Mapped[dict | None] = mapped_column(JSONB)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('sent', 'failed')", name="status_values"),
        Index("idx_notification_events_dedup", "channel_id", "run_id", "ticker", "stage", "status", "created_at"),
    )


class ErrorLog(Base):
    """Persistent error record with raw model output for human review."""
    __tablename__ = "error_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    context: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    run_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    ticker: Mapped[str | None] = mapped_column(String(20))
    stage: Mapped[int | None] = mapped_column(Integer)
    prompt_id: Mapped[str | None] = mapped_column(String(120))
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    status_code: Mapped[int | None] = mapped_column(Integer)
    payload: Mapped[dict | None] = mapped_column(JSONB)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_error_logs_run", "run_id", "created_at"),
    )
