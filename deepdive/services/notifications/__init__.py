"""
Notification Service Package - conviction alerts for finished deep dives.

This package provides:
- Conviction normalization and channel filters (score, conviction, watchlist)
- Email (Resend) and webhook delivery over httpx
- Dedup against recently sent events

Usage:
    from deepdive.services.notifications import (
        dispatch_stage3_notifications,
        match_channel,
        normalize_conviction,
    )
"""

from deepdive.services.notifications.dispatcher import (
    dispatch_context,
    dispatch_stage3_notifications,
)
from deepdive.services.notifications.filters import (
    AlertContext,
    build_alert_context,
    compare_conviction,
    compute_ensemble_score,
    match_channel,
    normalize_conviction,
)
from deepdive.services.notifications.message_builder import (
    build_email,
    build_ticker_url,
    build_webhook_text,
)
from deepdive.services.notifications.sender import (
    deliver,
    parse_recipients,
    send_email,
    send_webhook,
)

__all__ = [
    # Dispatch
    "dispatch_context",
    "dispatch_stage3_notifications",
    # Filters
    "AlertContext",
    "build_alert_context",
    "compare_conviction",
    "compute_ensemble_score",
    "match_channel",
    "normalize_conviction",
    # Message building
    "build_email",
    "build_ticker_url",
    "build_webhook_text",
    # Sender
    "deliver",
    "parse_recipients",
    "send_email",
    "send_webhook",
]
