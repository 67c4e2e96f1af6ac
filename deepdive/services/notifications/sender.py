"""Notification delivery over HTTP.

Email goes through the Resend API; webhook channels receive a JSON
``{"text": ...}`` body (Slack-compatible). Senders never raise on delivery
problems; they return ``(success, error_message)``.
"""

from __future__ import annotations

import re
from typing import Any

import httpx

from deepdive.core.config import settings
from deepdive.core.logging import get_logger

from .filters import AlertContext
from .message_builder import build_email, build_webhook_text


logger = get_logger("notifications.sender")

RESEND_API_URL = "https://api.resend.com/emails"

_RECIPIENT_SPLIT = re.compile(r"[,;\s]+")


def parse_recipients(target: str) -> list[str]:
    """Split a comma/semicolon/whitespace separated recipient list."""
    return [entry for entry in _RECIPIENT_SPLIT.split(target or "") if entry.strip()]


async def _post_json(
    url: str,
    body: dict[str, Any],
    service: str,
    headers: dict[str, str] | None = None,
) -> tuple[bool, str | None]:
    try:
        async with httpx.AsyncClient(timeout=settings.external_api_timeout) as client:
            response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        detail = exc.response.text or exc.response.reason_phrase
        logger.warning(
            f"{service} returned {exc.response.status_code}",
            extra={"status_code": exc.response.status_code},
        )
        return False, f"{service} returned {exc.response.status_code}: {detail}"
    except httpx.HTTPError as exc:
        logger.warning(f"{service} request failed: {exc}")
        return False, str(exc) or exc.__class__.__name__
    return True, None


async def send_email(channel: dict[str, Any], context: AlertContext) -> tuple[bool, str | None]:
    """Deliver an alert email through Resend.

    Args:
        channel: Channel dict; ``target`` holds one or more addresses
        context: Normalized alert

    Returns:
        Tuple of (success, error_message)
    """
    if not settings.resend_api_key or not settings.resend_from_email:
        return False, "Resend environment not configured"

    recipients = parse_recipients(channel.get("target", ""))
    if not recipients:
        return False, "No recipient provided"

    subject, text, html = build_email(context)
    return await _post_json(
        RESEND_API_URL,
        {
            "from": settings.resend_from_email,
            "to": recipients,
            "subject": subject,
            "text": text,
            "html": html,
        },
        service="Resend API",
        headers={"Authorization": f"Bearer {settings.resend_api_key}"},
    )


async def send_webhook(channel: dict[str, Any], context: AlertContext) -> tuple[bool, str | None]:
    """POST the condensed alert text to a webhook URL."""
    target = (channel.get("target") or "").strip()
    if not target:
        return False, "No webhook URL provided"
    return await _post_json(target, {"text": build_webhook_text(context)}, service="Webhook")


async def deliver(channel: dict[str, Any], context: AlertContext) -> tuple[bool, str | None]:
    """Route an alert to the sender for the channel type."""
    if channel.get("type") == "email":
        return await send_email(channel, context)
    return await send_webhook(channel, context)
