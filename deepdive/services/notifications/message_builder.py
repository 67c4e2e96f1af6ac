"""Message building for deep-dive alerts.

Email gets a subject with plain-text and HTML bodies; webhooks get a
condensed markdown-ish text block.
"""

from __future__ import annotations

from html import escape
from urllib.parse import urlencode

from deepdive.core.config import settings

from .filters import AlertContext


EMAIL_DIMENSION_LIMIT = 4
WEBHOOK_HIGHLIGHT_LIMIT = 3


def build_ticker_url(ticker: str, run_id: str | None) -> str | None:
    """Deep-dive detail link, or None when no public base URL is configured."""
    base = settings.public_base_url
    if not base:
        return None
    params = {"ticker": ticker}
    if run_id:
        params["run"] = run_id
    return f"{base}/ticker.html?{urlencode(params)}"


def _heading(context: AlertContext) -> str:
    return f"{context.ticker} — {context.company}" if context.company else context.ticker


def _rounded(score: object) -> int | None:
    if isinstance(score, (int, float)) and not isinstance(score, bool):
        return round(score)
    return None


def build_email(context: AlertContext) -> tuple[str, str, str]:
    """Build an alert email.

    Returns:
        Tuple of (subject, text, html)
    """
    label = context.conviction_label
    subject_parts = [context.ticker]
    if context.company:
        subject_parts.append(context.company)
    subject_parts.append(f"({label})" if label else "(conviction update)")
    subject = f"{settings.app_name} alert: {' '.join(subject_parts)}"

    link = build_ticker_url(context.ticker, context.run_id)
    dimensions = context.dimensions[:EMAIL_DIMENSION_LIMIT]

    text_lines = [_heading(context), f"Conviction: {label}"]
    html_parts = [
        f"<p><strong>{escape(_heading(context))}</strong></p>",
        f"<p>Conviction: {escape(label)}</p>",
    ]
    if context.ensemble_score is not None:
        text_lines.append(f"Ensemble score: {context.ensemble_score:g}")
        html_parts.append(f"<p>Ensemble score: <strong>{context.ensemble_score:g}</strong></p>")
    if context.verdict:
        text_lines.append(f"Verdict: {context.verdict}")
        html_parts.append(f"<p>Verdict: {escape(context.verdict)}</p>")
    if context.summary:
        text_lines.append(f"Summary: {context.summary}")
        html_parts.append(f"<p>{escape(context.summary)}</p>")

    items = []
    for entry in dimensions:
        name = entry.get("name") or entry.get("dimension") or "Dimension"
        verdict = entry.get("verdict") or "neutral"
        score = _rounded(entry.get("ensembleScore"))
        note = entry.get("summary") or ""
        text_lines.append(
            f"- {name}: {verdict}{f' ({score})' if score is not None else ''} — {note}".rstrip(" —")
        )
        items.append(
            f"<li><strong>{escape(f'{name}: {verdict}')}</strong>"
            f"{escape(f' — {score}') if score is not None else ''}<br/>{escape(note)}</li>"
        )
    if items:
        html_parts.append(f"<ul>{''.join(items)}</ul>")

    if link:
        text_lines.append(f"Detail: {link}")
        html_parts.append(f'<p><a href="{escape(link)}">Open latest deep dive →</a></p>')

    return subject, "\n".join(text_lines), "\n".join(html_parts)


def build_webhook_text(context: AlertContext) -> str:
    """Condensed alert text for webhook channels."""
    lines = [f"*{_heading(context)}*", f"Conviction: {context.conviction_label}"]
    if context.ensemble_score is not None:
        lines.append(f"Ensemble score: {context.ensemble_score:g}")
    if context.verdict:
        lines.append(f"Verdict: {context.verdict}")
    if context.summary:
        lines.append(f"Summary: {context.summary}")

    highlights = []
    for entry in context.dimensions[:WEBHOOK_HIGHLIGHT_LIMIT]:
        name = entry.get("name") or entry.get("dimension") or "Dimension"
        score = _rounded(entry.get("ensembleScore"))
        highlights.append(
            f"{name}: {entry.get('verdict') or 'neutral'}{f' ({score})' if score is not None else ''}"
        )
    if highlights:
        lines.append(f"Highlights: {'; '.join(highlights)}")

    link = build_ticker_url(context.ticker, context.run_id)
    if link:
        lines.append(f"Detail: {link}")
    return "\n".join(lines)
