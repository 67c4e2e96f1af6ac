"""Baseline deep-dive schema.

Revision ID: 001_baseline
Revises:
Create Date: 2026-03-01

Creates run state, the question registry, scoring factors, model profiles
and credentials, the completion cache, notifications and error logs, plus
the SQL functions the Stage 3 consumer calls:

- run_stage3_summary(p_run_id)
- run_cost_breakdown(p_run_id)
- match_doc_chunks(query_embedding, query_ticker, match_limit)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


EMBEDDING_DIMENSIONS = 1536


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _jsonb_list(name: str) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb"))


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    """Create all deep-dive tables and functions."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')
    op.execute('CREATE EXTENSION IF NOT EXISTS "vector"')

    # ==========================================================================
    # RUNS & PIPELINE STATE
    # ==========================================================================

    op.create_table(
        "runs",
        _uuid_pk(),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("stop_requested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", postgresql.JSONB()),
        sa.Column("label", sa.String(200)),
        sa.Column("watchlist_id", postgresql.UUID(as_uuid=True)),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "run_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("stage2_go_deep", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("spend_est_usd", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("run_id", "ticker", name="uq_run_items_run_ticker"),
        sa.CheckConstraint("stage BETWEEN 0 AND 3", name="ck_run_items_stage_range"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'ok', 'failed')", name="ck_run_items_status_values"
        ),
    )
    op.create_index("idx_run_items_pending", "run_items", ["run_id", "status", "stage", "updated_at"])

    op.create_table(
        "tickers",
        sa.Column("ticker", sa.String(20), primary_key=True),
        sa.Column("name", sa.String(255)),
        sa.Column("exchange", sa.String(50)),
        sa.Column("country", sa.String(100)),
        sa.Column("sector", sa.String(100)),
        sa.Column("industry", sa.String(200)),
    )

    op.create_table(
        "answers",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False),
        sa.Column("question_group", sa.String(120)),
        sa.Column("answer_json", postgresql.JSONB()),
        sa.Column("answer_text", sa.Text()),
        sa.Column("tokens_in", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tokens_out", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        _created_at(),
    )
    op.create_index("idx_answers_run_ticker_stage", "answers", ["run_id", "ticker", "stage", "created_at"])

    op.create_table(
        "cost_ledger",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticker", sa.String(20)),
        sa.Column("stage", sa.Integer(), nullable=False),
        sa.Column("model", sa.String(120), nullable=False),
        sa.Column("tokens_in", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tokens_out", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        _created_at(),
    )
    op.create_index("idx_cost_ledger_run_stage", "cost_ledger", ["run_id", "stage"])

    # ==========================================================================
    # QUESTION REGISTRY & OUTCOMES
    # ==========================================================================

    op.create_table(
        "analysis_dimensions",
        _uuid_pk(),
        sa.Column("slug", sa.String(80), unique=True, nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("weight", sa.Numeric(8, 4), nullable=False, server_default=sa.text("1")),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("color_bad", sa.String(20)),
        sa.Column("color_neutral", sa.String(20)),
        sa.Column("color_good", sa.String(20)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "analysis_questions",
        _uuid_pk(),
        sa.Column("slug", sa.String(120), unique=True, nullable=False),
        sa.Column("dimension_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("analysis_dimensions.id"), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("title", sa.String(200)),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("guidance", sa.Text()),
        sa.Column("weight", sa.Numeric(8, 4), nullable=False, server_default=sa.text("1")),
        sa.Column("answer_schema", postgresql.JSONB()),
        _jsonb_list("depends_on"),
        _jsonb_list("tags"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("idx_analysis_questions_stage", "analysis_questions", ["stage", "is_active"])

    op.create_table(
        "analysis_question_results",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("question_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("analysis_questions.id"), nullable=False),
        sa.Column("question_slug", sa.String(120), nullable=False),
        sa.Column("dimension_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("analysis_dimensions.id"), nullable=False),
        sa.Column("verdict", sa.String(10), nullable=False),
        sa.Column("score", sa.Numeric(6, 2)),
        sa.Column("weight", sa.Numeric(8, 4), nullable=False, server_default=sa.text("1")),
        sa.Column("summary", sa.Text()),
        _jsonb_list("tags"),
        sa.Column("answer", postgresql.JSONB()),
        _jsonb_list("citations"),
        _jsonb_list("retrieval"),
        sa.Column("tokens_in", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tokens_out", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        sa.Column("cache_hit", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("run_id", "ticker", "question_id", name="uq_question_results_run_ticker_question"),
        sa.CheckConstraint("verdict IN ('bad', 'neutral', 'good')", name="ck_analysis_question_results_verdict_values"),
    )

    op.create_table(
        "analysis_dimension_scores",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("dimension_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("analysis_dimensions.id"), nullable=False),
        sa.Column("verdict", sa.String(10), nullable=False),
        sa.Column("score", sa.Numeric(6, 2)),
        sa.Column("weight", sa.Numeric(10, 4), nullable=False, server_default=sa.text("1")),
        sa.Column("color", sa.String(20)),
        sa.Column("summary", sa.Text()),
        _jsonb_list("tags"),
        sa.Column("llm_score", sa.Numeric(6, 2)),
        sa.Column("llm_weight", sa.Numeric(10, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("factor_score", sa.Numeric(6, 2)),
        sa.Column("factor_weight", sa.Numeric(10, 4), nullable=False, server_default=sa.text("0")),
        _jsonb_list("factor_breakdown"),
        sa.Column("ensemble_score", sa.Numeric(6, 2)),
        sa.Column("details", postgresql.JSONB()),
        _updated_at(),
        sa.UniqueConstraint("run_id", "ticker", "dimension_id", name="uq_dimension_scores_run_ticker_dimension"),
    )

    # ==========================================================================
    # QUANTITATIVE FACTORS
    # ==========================================================================

    op.create_table(
        "scoring_factors",
        _uuid_pk(),
        sa.Column("slug", sa.String(80), unique=True, nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(60)),
        sa.Column("direction", sa.String(20), nullable=False, server_default="higher_better"),
        sa.Column("scale_min", sa.Numeric(18, 6)),
        sa.Column("scale_max", sa.Numeric(18, 6)),
        sa.Column("weight", sa.Numeric(8, 4), nullable=False, server_default=sa.text("1")),
        sa.Column("metadata", postgresql.JSONB()),
        sa.CheckConstraint("direction IN ('higher_better', 'lower_better')", name="ck_scoring_factors_direction_values"),
    )

    op.create_table(
        "dimension_factor_links",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("dimension_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("analysis_dimensions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("factor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("scoring_factors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("weight", sa.Numeric(8, 4), nullable=False, server_default=sa.text("1")),
        sa.UniqueConstraint("dimension_id", "factor_id", name="uq_dimension_factor_links_pair"),
    )

    op.create_table(
        "ticker_factor_snapshots",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("factor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("scoring_factors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("value", sa.Numeric(18, 6)),
        sa.Column("score", sa.Numeric(6, 2)),
        sa.Column("as_of", sa.DateTime(timezone=True)),
        sa.Column("source", sa.String(120)),
        sa.Column("notes", sa.Text()),
        sa.Column("metadata", postgresql.JSONB()),
        sa.UniqueConstraint("ticker", "factor_id", name="uq_ticker_factor_snapshots_pair"),
    )

    # ==========================================================================
    # AI MODELS, CREDENTIALS & CACHE
    # ==========================================================================

    op.create_table(
        "ai_model_profiles",
        sa.Column("slug", sa.String(80), primary_key=True),
        sa.Column("label", sa.String(120)),
        sa.Column("provider", sa.String(40), nullable=False, server_default="openai"),
        sa.Column("model_name", sa.String(120), nullable=False),
        sa.Column("base_url", sa.String(255)),
        sa.Column("tier", sa.String(40)),
        sa.Column("price_in", sa.Numeric(10, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("price_out", sa.Numeric(10, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "api_credentials",
        _uuid_pk(),
        sa.Column("provider", sa.String(40), nullable=False),
        sa.Column("label", sa.String(120)),
        sa.Column("encrypted_key", sa.Text(), nullable=False),
        sa.Column("key_hint", sa.String(20)),
        sa.Column("tier", sa.String(40)),
        _jsonb_list("scopes"),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_api_credentials_provider", "api_credentials", ["provider", "is_active", "updated_at"])

    op.create_table(
        "cached_completions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("model_slug", sa.String(80), nullable=False),
        sa.Column("cache_key", sa.String(240), nullable=False),
        sa.Column("prompt_hash", sa.String(64), nullable=False),
        sa.Column("request_body", postgresql.JSONB()),
        sa.Column("response_body", postgresql.JSONB()),
        sa.Column("usage", postgresql.JSONB()),
        sa.Column("context", postgresql.JSONB()),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_hit_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("model_slug", "cache_key", name="uq_cached_completions_model_key"),
    )
    op.create_index("idx_cached_completions_expires", "cached_completions", ["expires_at"])

    # ==========================================================================
    # NOTIFICATIONS & OBSERVABILITY
    # ==========================================================================

    op.create_table(
        "notification_channels",
        _uuid_pk(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("label", sa.String(120), nullable=False),
        sa.Column("target", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("min_score", sa.Numeric(6, 2)),
        _jsonb_list("conviction_levels"),
        _jsonb_list("watchlist_ids"),
        sa.Column("metadata", postgresql.JSONB()),
        _created_at(),
        sa.CheckConstraint("type IN ('email', 'webhook')", name="ck_notification_channels_type_values"),
    )

    op.create_table(
        "notification_events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("channel_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("notification_channels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("conviction", sa.String(60)),
        sa.Column("verdict", sa.Text()),
        sa.Column("ensemble_score", sa.Numeric(6, 2)),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("error", sa.Text()),
        sa.Column("payload", postgresql.JSONB()),
        sa.Column("dispatched_at", sa.DateTime(timezone=True)),
        _created_at(),
        sa.CheckConstraint("status IN ('sent', 'failed')", name="ck_notification_events_status_values"),
    )
    op.create_index(
        "idx_notification_events_dedup",
        "notification_events",
        ["channel_id", "run_id", "ticker", "stage", "status", "created_at"],
    )

    op.create_table(
        "error_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("context", sa.String(120), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("run_id", postgresql.UUID(as_uuid=True)),
        sa.Column("ticker", sa.String(20)),
        sa.Column("stage", sa.Integer()),
        sa.Column("prompt_id", sa.String(120)),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status_code", sa.Integer()),
        sa.Column("payload", postgresql.JSONB()),
        sa.Column("metadata", postgresql.JSONB()),
        _created_at(),
    )
    op.create_index("idx_error_logs_run", "error_logs", ["run_id", "created_at"])

    # ==========================================================================
    # DOCUMENTS (RETRIEVAL)
    # ==========================================================================

    op.execute(f"""
        CREATE TABLE doc_chunks (
            id BIGSERIAL PRIMARY KEY,
            ticker VARCHAR(20) NOT NULL,
            title TEXT,
            source_type VARCHAR(40),
            source_url TEXT,
            published_at TIMESTAMPTZ,
            chunk TEXT NOT NULL,
            token_length INTEGER NOT NULL DEFAULT 0,
            embedding vector({EMBEDDING_DIMENSIONS}),
            created_at TIMESTAMPTZ DEFAULT now()
        )
    """)
    op.create_index("idx_doc_chunks_ticker", "doc_chunks", ["ticker"])

    # ==========================================================================
    # FUNCTIONS
    # ==========================================================================

    op.execute("""
        CREATE OR REPLACE FUNCTION run_stage3_summary(p_run_id UUID)
        RETURNS TABLE (total_finalists BIGINT, pending BIGINT, completed BIGINT, failed BIGINT)
        LANGUAGE sql STABLE AS $$
            SELECT
                count(*) FILTER (WHERE stage2_go_deep),
                count(*) FILTER (WHERE stage2_go_deep AND stage < 3 AND status IN ('ok', 'in_progress')),
                count(*) FILTER (WHERE stage2_go_deep AND stage = 3 AND status = 'ok'),
                count(*) FILTER (WHERE stage2_go_deep AND status = 'failed')
            FROM run_items
            WHERE run_id = p_run_id
        $$
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION run_cost_breakdown(p_run_id UUID)
        RETURNS TABLE (stage INTEGER, model VARCHAR, tokens_in BIGINT, tokens_out BIGINT, cost_usd NUMERIC)
        LANGUAGE sql STABLE AS $$
            SELECT stage, model, sum(tokens_in), sum(tokens_out), sum(cost_usd)
            FROM cost_ledger
            WHERE run_id = p_run_id
            GROUP BY stage, model
            ORDER BY stage, model
        $$
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION match_doc_chunks(
            query_embedding vector,
            query_ticker VARCHAR,
            match_limit INTEGER DEFAULT 6
        )
        RETURNS TABLE (
            id BIGINT,
            ticker VARCHAR,
            title TEXT,
            source_type VARCHAR,
            source_url TEXT,
            published_at TIMESTAMPTZ,
            chunk TEXT,
            token_length INTEGER,
            similarity DOUBLE PRECISION
        )
        LANGUAGE sql STABLE AS $$
            SELECT
                d.id, d.ticker, d.title, d.source_type, d.source_url, d.published_at,
                d.chunk, d.token_length,
                1 - (d.embedding <=> query_embedding) AS similarity
            FROM doc_chunks d
            WHERE d.ticker = query_ticker AND d.embedding IS NOT NULL
            ORDER BY d.embedding <=> query_embedding
            LIMIT match_limit
        $$
    """)


def downgrade() -> None:
    """Drop all deep-dive tables and functions."""
    op.execute("DROP FUNCTION IF EXISTS match_doc_chunks(vector, VARCHAR, INTEGER)")
    op.execute("DROP FUNCTION IF EXISTS run_cost_breakdown(UUID)")
    op.execute("DROP FUNCTION IF EXISTS run_stage3_summary(UUID)")

    for table in (
        "doc_chunks",
        "error_logs",
        "notification_events",
        "notification_channels",
        "cached_completions",
        "api_credentials",
        "ai_model_profiles",
        "ticker_factor_snapshots",
        "dimension_factor_links",
        "scoring_factors",
        "analysis_dimension_scores",
        "analysis_question_results",
        "analysis_questions",
        "analysis_dimensions",
        "cost_ledger",
        "answers",
        "tickers",
        "run_items",
        "runs",
    ):
        op.drop_table(table)
