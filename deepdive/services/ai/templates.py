"""Prompt template rendering and per-invocation loading."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

from deepdive.core.logging import get_logger

from .prompts import DEFAULT_TEMPLATES


logger = get_logger("ai.templates")

_TOKEN = re.compile(r"{{\s*([\w.-]+)\s*}}")
_EDGE_NEWLINES = re.compile(r"^\n+|\n+$")


def normalize_template(value: Any) -> str:
    """Convert CRLF to LF and trim leading/trailing blank lines."""
    if not isinstance(value, str):
        return ""
    return _EDGE_NEWLINES.sub("", value.replace("\r\n", "\n"))


def render_template(template: Any, tokens: Mapping[str, Any] | None = None) -> str:
    """
    Interpolate ``{{ key }}`` tokens.

    Missing or None values render as empty strings and lists are joined
    without a separator.
    """
    if not isinstance(template, str):
        return ""
    tokens = tokens or {}

    def replace(match: re.Match[str]) -> str:
        value = tokens.get(match.group(1))
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return "".join(str(v) for v in value)
        return str(value)

    return _TOKEN.sub(replace, template)


class PromptLibrary:
    """
    Loads each template once for the lifetime of the library.

    One library is created per pipeline invocation, so edits to template
    files are picked up by the next batch without a restart.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self._directory = Path(directory) if directory else None
        self._loaded: dict[str, str] = {}

    def get(self, key: str) -> str:
        if key not in self._loaded:
            self._loaded[key] = normalize_template(self._read(key))
        return self._loaded[key]

    def render(self, key: str, tokens: Mapping[str, Any]) -> str:
        return render_template(self.get(key), tokens)

    def _read(self, key: str) -> str:
        if self._directory is not None:
            path = self._directory / f"{key}.md"
            if path.is_file():
                return path.read_text(encoding="utf-8")
        if key not in DEFAULT_TEMPLATES:
            raise KeyError(f"Unknown prompt template: {key}")
        return DEFAULT_TEMPLATES[key]
