"""Tests for question dependency ordering."""

from __future__ import annotations

import pytest

from deepdive.core.exceptions import RegistryError
from deepdive.services.deep_dive import order_questions


def _slugs(questions):
    return [q.slug for q in questions]


class TestOrderQuestions:
    """Tests for order_questions."""

    def test_independent_questions_keep_registry_order(self, make_question):
        questions = [make_question("a"), make_question("b"), make_question("c")]
        assert _slugs(order_questions(questions)) == ["a", "b", "c"]

    def test_dependencies_come_first(self, make_question):
        questions = [
            make_question("thesis", depends_on=("moat", "margins")),
            make_question("moat"),
            make_question("margins"),
        ]
        assert _slugs(order_questions(questions)) == ["moat", "margins", "thesis"]

    def test_ties_break_by_registry_order(self, make_question):
        questions = [
            make_question("z-last", depends_on=("root",)),
            make_question("root"),
            make_question("a-first", depends_on=("root",)),
        ]
        # Both dependents become ready together; registry order decides
        assert _slugs(order_questions(questions)) == ["root", "z-last", "a-first"]

    def test_chain(self, make_question):
        questions = [
            make_question("c", depends_on=("b",)),
            make_question("b", depends_on=("a",)),
            make_question("a"),
        ]
        assert _slugs(order_questions(questions)) == ["a", "b", "c"]

    def test_cycle_raises(self, make_question):
        questions = [
            make_question("a", depends_on=("b",)),
            make_question("b", depends_on=("a",)),
            make_question("c"),
        ]
        with pytest.raises(RegistryError) as exc_info:
            order_questions(questions)
        assert exc_info.value.details["cycle"] == ["a", "b"]

    def test_self_dependency_is_a_cycle(self, make_question):
        with pytest.raises(RegistryError) as exc_info:
            order_questions([make_question("a", depends_on=("a",))])
        assert exc_info.value.details["cycle"] == ["a"]

    def test_unknown_dependency_raises(self, make_question):
        questions = [make_question("a", depends_on=("retired-question",))]
        with pytest.raises(RegistryError) as exc_info:
            order_questions(questions)
        assert exc_info.value.details["missing"] == [
            {"question": "a", "depends_on": "retired-question"}
        ]

    def test_empty_registry(self):
        assert order_questions([]) == []
