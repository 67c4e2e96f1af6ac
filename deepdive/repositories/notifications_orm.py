"""Notifications repository using SQLAlchemy ORM.

Channels are configured elsewhere; this module lists them and records
every delivery attempt as an event. Events double as the dedup source.

Usage:
    from deepdive.repositories.notifications_orm import (
        list_active_channels, has_recent_sent_event, create_event,
    )
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import select

from deepdive.core.logging import get_logger
from deepdive.database.connection import get_session
from deepdive.database.orm import NotificationChannel, NotificationEvent


logger = get_logger("repositories.notifications_orm")


# =============================================================================
# CHANNEL OPERATIONS
# =============================================================================


def _channel_to_dict(channel: NotificationChannel) -> dict[str, Any]:
    return {
        "id": str(channel.id),
        "type": channel.type,
        "label": channel.label,
        "target": channel.target,
        "is_active": bool(channel.is_active),
        "min_score": float(channel.min_score) if channel.min_score is not None else None,
        "conviction_levels": list(channel.conviction_levels or []),
        "watchlist_ids": [str(v) for v in (channel.watchlist_ids or [])],
        "metadata": dict(channel.metadata_ or {}),
    }


async def list_active_channels() -> list[dict[str, Any]]:
    """List all active notification channels."""
    async with get_session() as session:
        result = await session.execute(
            select(NotificationChannel)
            .where(NotificationChannel.is_active.is_(True))
            .order_by(NotificationChannel.created_at)
        )
        return [_channel_to_dict(c) for c in result.scalars().all()]


# =============================================================================
# EVENT OPERATIONS
# =============================================================================


async def has_recent_sent_event(
    channel_id: str,
    run_id: str,
    ticker: str,
    stage: int,
    window_hours: int,
) -> bool:
    """Check whether a ``sent`` event exists inside the dedup window."""
    cutoff = datetime.now(UTC) - timedelta(hours=window_hours)
    async with get_session() as session:
        result = await session.execute(
            select(NotificationEvent.id)
            .where(
                NotificationEvent.channel_id == uuid.UUID(channel_id),
                NotificationEvent.run_id == uuid.UUID(run_id),
                NotificationEvent.ticker == ticker,
                NotificationEvent.stage == stage,
                NotificationEvent.status == "sent",
                NotificationEvent.created_at >= cutoff,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None


async def create_event(
    channel_id: str,
    run_id: str,
    ticker: str,
    stage: int,
    status: str,
    conviction: str | None = None,
    verdict: str | None = None,
    ensemble_score: float | None = None,
    error: str | None = None,
    payload: dict[str, Any] | None = None,
    dispatched_at: datetime | None = None,
) -> int:
    """Record a delivery attempt.

    Args:
        channel_id: Channel UUID
        run_id: Run UUID
        ticker: Ticker symbol
        stage: Pipeline stage (3 for deep dives)
        status: ``sent`` or ``failed``
        conviction: Normalized conviction level
        verdict: Summary verdict text
        ensemble_score: Aggregate ensemble score
        error: Failure reason
        payload: Message preview and channel context
        dispatched_at: Delivery time when sent

    Returns:
        Event id
    """
    async with get_session() as session:
        event = NotificationEvent(
            channel_id=uuid.UUID(channel_id),
            run_id=uuid.UUID(run_id),
            ticker=ticker,
            stage=stage,
            conviction=conviction,
            verdict=verdict,
            ensemble_score=Decimal(str(ensemble_score)) if ensemble_score is not None else None,
            status=status,
            error=error,
            payload=payload or {},
            dispatched_at=dispatched_at,
        )
        session.add(event)
        await session.commit()
        await session.refresh(event)
        return event.id
