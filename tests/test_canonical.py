"""Tests for canonical request serialization and cache keys."""

from __future__ import annotations

import math

import pytest

from deepdive.services.ai.canonical import (
    MAX_CACHE_KEY_LENGTH,
    build_cache_key,
    hash_request_body,
    stable_stringify,
)


class TestStableStringify:
    """Tests for stable_stringify."""

    def test_key_order_does_not_matter(self):
        a = {"b": 1, "a": {"y": [1, 2], "x": "z"}}
        b = {"a": {"x": "z", "y": [1, 2]}, "b": 1}
        assert stable_stringify(a) == stable_stringify(b)

    def test_nested_keys_are_sorted(self):
        assert stable_stringify({"b": {"d": 1, "c": 2}, "a": 0}) == '{"a":0,"b":{"c":2,"d":1}}'

    def test_list_order_is_preserved(self):
        assert stable_stringify([3, 1, 2]) == "[3,1,2]"

    def test_non_finite_floats_become_null(self):
        assert stable_stringify({"a": math.nan, "b": math.inf}) == '{"a":null,"b":null}'

    def test_integral_floats_render_as_integers(self):
        assert stable_stringify({"temperature": 1.0}) == '{"temperature":1}'
        assert stable_stringify({"temperature": 1.5}) == '{"temperature":1.5}'
        assert stable_stringify(-0.0) == "0"

    def test_tuples_serialize_as_lists(self):
        assert stable_stringify({"stop": ("a", "b")}) == '{"stop":["a","b"]}'

    def test_unicode_is_kept(self):
        assert stable_stringify({"name": "Nestlé"}) == '{"name":"Nestlé"}'

    def test_cycle_raises(self):
        data: dict = {}
        data["self"] = data
        with pytest.raises(TypeError):
            stable_stringify(data)


class TestHashRequestBody:
    """Tests for hash_request_body."""

    def test_hash_is_stable_across_key_order(self):
        first = {"model": "m", "messages": [{"role": "user", "content": "hi"}], "temperature": 0.2}
        second = {"temperature": 0.2, "messages": [{"content": "hi", "role": "user"}], "model": "m"}
        assert hash_request_body(first) == hash_request_body(second)

    def test_any_content_change_changes_hash(self):
        base = {"model": "m", "messages": [{"role": "user", "content": "hi"}]}
        changed = {"model": "m", "messages": [{"role": "user", "content": "hi!"}]}
        assert hash_request_body(base) != hash_request_body(changed)

    def test_int_and_float_bodies_hash_identically(self):
        as_int = {"model": "m", "temperature": 1, "max_tokens": 800}
        as_float = {"model": "m", "temperature": 1.0, "max_tokens": 800.0}
        assert hash_request_body(as_int) == hash_request_body(as_float)

    def test_hash_is_hex_sha256(self):
        digest = hash_request_body({"a": 1})
        assert len(digest) == 64
        int(digest, 16)


class TestBuildCacheKey:
    """Tests for build_cache_key."""

    def test_normalizes_parts(self):
        key = build_cache_key(["stage3", "AAPL", "question-Moat Quality", "ab12"])
        assert key == "stage3:aapl:question-moat-quality:ab12"

    def test_drops_invalid_characters_and_empty_parts(self):
        key = build_cache_key(["Stage3", None, "  ", "BRK.B", "summary!"])
        assert key == "stage3:brkb:summary"

    def test_truncates_long_keys(self):
        key = build_cache_key(["x" * 500])
        assert len(key) == MAX_CACHE_KEY_LENGTH
