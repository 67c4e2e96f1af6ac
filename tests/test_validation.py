"""Tests for model output parsing and validation."""

from __future__ import annotations

import pytest

from deepdive.services.ai import (
    parse_json_payload,
    validate_stage3_question,
    validate_stage3_summary,
)


class TestParseJsonPayload:
    """Tests for parse_json_payload."""

    def test_plain_object(self):
        assert parse_json_payload('{"verdict": "good"}') == {"verdict": "good"}

    def test_fenced_object(self):
        text = '```json\n{"verdict": "bad", "score": 12}\n```'
        assert parse_json_payload(text) == {"verdict": "bad", "score": 12}

    @pytest.mark.parametrize("text", ["", "   ", "not json", "[1, 2]", '"string"'])
    def test_rejects_non_objects(self, text):
        with pytest.raises(ValueError):
            parse_json_payload(text)


class TestValidateStage3Question:
    """Tests for validate_stage3_question."""

    def test_minimal_valid_answer(self):
        assert validate_stage3_question({"verdict": "good"}).valid

    @pytest.mark.parametrize("key", ["verdict", "rating", "outlook"])
    def test_any_verdict_field_counts(self, key):
        assert validate_stage3_question({key: "neutral"}).valid

    def test_missing_verdict(self):
        result = validate_stage3_question({"summary": "Looks fine."})
        assert not result.valid
        assert "verdict" in result.explain()

    @pytest.mark.parametrize("score", [-1, 101, "high", float("nan")])
    def test_out_of_range_score(self, score):
        assert not validate_stage3_question({"verdict": "good", "score": score}).valid

    def test_numeric_score_alias_is_checked(self):
        assert not validate_stage3_question({"verdict": "good", "numeric_score": 250}).valid
        assert validate_stage3_question({"verdict": "good", "numeric_score": 75}).valid

    def test_null_score_is_allowed(self):
        assert validate_stage3_question({"verdict": "good", "score": None}).valid

    def test_too_many_tags(self):
        payload = {"verdict": "good", "tags": [f"t{i}" for i in range(13)]}
        assert not validate_stage3_question(payload).valid

    def test_overlong_signal(self):
        payload = {"verdict": "good", "signals": ["x" * 281]}
        assert not validate_stage3_question(payload).valid

    def test_blank_summary(self):
        assert not validate_stage3_question({"verdict": "good", "summary": "   "}).valid

    def test_question_schema_required_keys(self):
        schema = {"required": ["moat_source"]}
        assert not validate_stage3_question({"verdict": "good"}, schema).valid
        assert validate_stage3_question({"verdict": "good", "moat_source": "network"}, schema).valid

    def test_non_object(self):
        assert not validate_stage3_question(["good"]).valid


class TestValidateStage3Summary:
    """Tests for validate_stage3_summary."""

    @pytest.mark.parametrize("key", ["thesis", "narrative", "summary"])
    def test_any_memo_field_counts(self, key):
        assert validate_stage3_summary({key: "Compounding franchise."}).valid

    def test_missing_thesis(self):
        result = validate_stage3_summary({"verdict": "Buy"})
        assert not result.valid
        assert result.errors

    def test_scoreboard_must_be_list(self):
        assert not validate_stage3_summary({"thesis": "x", "scoreboard": {"a": 1}}).valid
