"""Conviction alert dispatch after a completed deep dive.

Every eligible channel gets at most one successful delivery per
(run, ticker, stage) inside the dedup window. Each attempt is recorded as a
notification event, and nothing here propagates to the pipeline.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError

from deepdive.core.config import settings
from deepdive.core.logging import get_logger
from deepdive.repositories import notifications_orm as repo

from .filters import AlertContext, build_alert_context, match_channel
from .sender import deliver


logger = get_logger("notifications.dispatcher")

STAGE = 3


def _event_payload(context: AlertContext, channel: dict[str, Any]) -> dict[str, Any]:
    return {
        "run_id": context.run_id,
        "ticker": context.ticker,
        "company": context.company,
        "summary": context.summary,
        "conviction": context.conviction_text or context.conviction_level,
        "ensemble_score": context.ensemble_score,
        "verdict": context.verdict,
        "run_label": context.run_label,
        "channel_label": channel.get("label"),
        "dimension_summaries": context.dimensions,
        "stage3_summary": context.stage3_summary,
    }


async def _already_sent(channel_id: str, context: AlertContext) -> bool:
    try:
        return await repo.has_recent_sent_event(
            channel_id,
            context.run_id,
            context.ticker,
            STAGE,
            settings.notification_dedup_hours,
        )
    except SQLAlchemyError as e:
        logger.warning(f"Notification event lookup failed: {e}")
        return False


async def _record_event(
    channel: dict[str, Any],
    context: AlertContext,
    status: str,
    error: str | None,
    payload: dict[str, Any],
) -> None:
    try:
        await repo.create_event(
            channel_id=channel["id"],
            run_id=context.run_id,
            ticker=context.ticker,
            stage=STAGE,
            status=status,
            conviction=context.conviction_text or context.conviction_level,
            verdict=context.verdict,
            ensemble_score=context.ensemble_score,
            error=error,
            payload=payload,
            dispatched_at=datetime.now(UTC) if status == "sent" else None,
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to record notification event: {e}", extra={"channel_id": channel["id"]})


async def dispatch_context(context: AlertContext) -> dict[str, int]:
    """Deliver an already-normalized alert to every matching channel.

    Returns:
        Counts of ``sent``, ``failed`` and ``skipped`` deliveries
    """
    counts = {"sent": 0, "failed": 0, "skipped": 0}
    if not context.has_substance:
        return counts

    try:
        channels = await repo.list_active_channels()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load notification channels: {e}")
        return counts

    for channel in channels:
        if not match_channel(channel, context):
            continue
        try:
            if await _already_sent(channel["id"], context):
                counts["skipped"] += 1
                continue
            success, error = await deliver(channel, context)
        except Exception as e:
            logger.error(
                f"Failed to dispatch notification: {e}",
                extra={"channel_id": channel.get("id"), "ticker": context.ticker},
            )
            counts["failed"] += 1
            await _record_event(
                channel,
                context,
                "failed",
                str(e),
                {
                    "run_id": context.run_id,
                    "ticker": context.ticker,
                    "channel_label": channel.get("label"),
                    "error": str(e),
                },
            )
            continue

        status = "sent" if success else "failed"
        counts[status] += 1
        await _record_event(channel, context, status, error, _event_payload(context, channel))

    if counts["sent"] or counts["failed"]:
        logger.info(
            "Dispatched conviction alerts",
            extra={"ticker": context.ticker, "run_id": context.run_id, **counts},
        )
    return counts


async def dispatch_stage3_notifications(
    *,
    run: Mapping[str, Any],
    ticker: str,
    summary: Mapping[str, Any] | None,
    dimensions: list[dict[str, Any]],
    company: str | None = None,
) -> dict[str, int]:
    """Normalize a Stage 3 result and dispatch alerts for it.

    Args:
        run: Run dict (``id``, ``watchlist_id``, ``label``)
        ticker: Ticker symbol
        summary: Validated summary payload
        dimensions: Scoreboard entries with ``ensembleScore``, ``weight``,
            ``name``, ``verdict`` and ``summary``
        company: Company name for headings

    Usage:
        await dispatch_stage3_notifications(
            run=run, ticker="AAPL", summary=memo, dimensions=scoreboard
        )
    """
    context = build_alert_context(
        run_id=str(run["id"]),
        ticker=ticker,
        summary=summary,
        dimensions=dimensions,
        company=company,
        watchlist_id=run.get("watchlist_id"),
        run_label=run.get("label"),
    )
    return await dispatch_context(context)
