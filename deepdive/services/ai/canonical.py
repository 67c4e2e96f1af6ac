"""
Canonical request serialization and cache-key construction.

Two request bodies that differ only in key order must hash identically, so
every body is rendered through ``stable_stringify`` before hashing.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
from typing import Any, Iterable


_KEY_WHITESPACE = re.compile(r"\s+")
_KEY_INVALID = re.compile(r"[^a-z0-9:_\-]")

MAX_CACHE_KEY_LENGTH = 240


def _normalize(value: Any, seen: set[int]) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        # 1.0 and 1 must hash identically
        return int(value) if value.is_integer() else value

    if isinstance(value, dict):
        marker = id(value)
        if marker in seen:
            raise TypeError("Cannot stringify circular structure")
        seen.add(marker)
        try:
            return {
                str(key): _normalize(value[key], seen)
                for key in sorted(value, key=str)
            }
        finally:
            seen.discard(marker)

    if isinstance(value, (list, tuple, set, frozenset)):
        marker = id(value)
        if marker in seen:
            raise TypeError("Cannot stringify circular structure")
        seen.add(marker)
        try:
            items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
            return [_normalize(item, seen) for item in items]
        finally:
            seen.discard(marker)

    # Decimals, UUIDs, datetimes and similar scalars
    return str(value)


def stable_stringify(value: Any) -> str:
    """
    Serialize a JSON-like value deterministically.

    Mapping keys are sorted at every depth, non-finite floats become null and
    sets/tuples serialize as lists.

    Raises:
        TypeError: If the value contains a reference cycle
    """
    return json.dumps(
        _normalize(value, set()),
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def hash_request_body(body: Any) -> str:
    """Hex SHA-256 of the canonical serialization."""
    return hashlib.sha256(stable_stringify(body).encode("utf-8")).hexdigest()


def build_cache_key(parts: Iterable[Any]) -> str:
    """
    Join key parts into a normalized cache key.

    Each part is lowercased, whitespace runs become ``-`` and characters
    outside ``[a-z0-9:_-]`` are dropped. Empty parts are skipped.

    Example:
        >>> build_cache_key(["stage3", "AAPL", "question-Moat Quality", "ab12"])
        'stage3:aapl:question-moat-quality:ab12'
    """
    cleaned: list[str] = []
    for part in parts:
        if part is None:
            continue
        text = _KEY_WHITESPACE.sub("-", str(part).strip().lower())
        text = _KEY_INVALID.sub("", text)
        if text:
            cleaned.append(text)
    return ":".join(cleaned)[:MAX_CACHE_KEY_LENGTH]
