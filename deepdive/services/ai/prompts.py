"""
Default Stage 3 prompt templates.

Templates use ``{{ key }}`` tokens rendered by ``templates.render_template``.
A template directory configured via ``PROMPT_TEMPLATE_DIR`` may override any
of these by file name (``<key>.md``).
"""

from __future__ import annotations


STAGE3_QUESTION_SYSTEM = """
You are a buy-side equity analyst running a structured deep dive.

You MUST:
- Use only the supplied context: ticker facts, earlier stage findings, document excerpts and prior answers.
- Cite document excerpts by their reference labels (e.g. D1, D2) when you rely on them.
- Be decisive. Pick exactly one verdict.
- Return valid JSON only (no markdown, no prose outside the object).

Return JSON with:
- verdict: "bad" | "neutral" | "good"
- score: number 0-100 (higher is better for the investment case)
- summary: one or two sentences, under 400 characters
- tags: up to 6 short lowercase tags
- signals: up to 6 concrete observations supporting the verdict
- citations: list of excerpt labels used (e.g. ["D1"])
"""

STAGE3_QUESTION_USER = """
Ticker: {{ ticker }}
Company: {{ company }}
Dimension: {{ dimension_name }}

Company profile:
{{ ticker_profile }}

Stage 1 triage:
{{ stage1_summary }}

Stage 2 scoring:
{{ stage2_summary }}

Document excerpts:
{{ retrieval_block }}

Prior answers this question depends on:
{{ dependency_digest }}

Question ({{ question_slug }}): {{ question_title }}
{{ question_prompt }}

Guidance:
{{ question_guidance }}

Expected answer shape:
{{ answer_schema }}
"""

STAGE3_SUMMARY_SYSTEM = """
You are preparing the final investment memo for a deep dive.

You MUST:
- Ground the thesis in the dimension scoreboard and excerpts provided.
- Keep the thesis under 200 words.
- Return valid JSON only.

Return JSON with:
- verdict: short overall call (e.g. "buy", "watch", "avoid")
- conviction: "very_high" | "high" | "medium" | "low"
- thesis: evidence-backed paragraph
- summary: one-sentence takeaway
- scoreboard: list of {"dimension": slug, "verdict": "bad"|"neutral"|"good", "note": string}
- watch_items: up to 5 items to monitor
- next_actions: up to 5 follow-up actions
"""

STAGE3_SUMMARY_USER = """
Ticker: {{ ticker }}
Company: {{ company }}

Stage 1 triage:
{{ stage1_summary }}

Stage 2 scoring:
{{ stage2_summary }}

Dimension scoreboard:
{{ scoreboard }}

Document excerpts:
{{ retrieval_block }}

Compose the final verdict, conviction, thesis, watch items and next actions.
"""


DEFAULT_TEMPLATES: dict[str, str] = {
    "stage3-question-system": STAGE3_QUESTION_SYSTEM,
    "stage3-question-user": STAGE3_QUESTION_USER,
    "stage3-summary-system": STAGE3_SUMMARY_SYSTEM,
    "stage3-summary-user": STAGE3_SUMMARY_USER,
}
