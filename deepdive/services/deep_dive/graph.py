"""Dependency ordering for the question registry."""

from __future__ import annotations

import heapq
from typing import Sequence

from deepdive.core.exceptions import RegistryError

from .models import QuestionDefinition


def order_questions(questions: Sequence[QuestionDefinition]) -> list[QuestionDefinition]:
    """
    Topologically sort questions by ``depends_on``.

    ``questions`` must already be in registry order (dimension order, then
    question order); among questions whose dependencies are satisfied the
    earliest in registry order goes first.

    Raises:
        RegistryError: A dependency names an unknown or inactive question,
            or the dependencies form a cycle
    """
    index = {q.slug: i for i, q in enumerate(questions)}

    unknown = sorted(
        {(q.slug, dep) for q in questions for dep in q.depends_on if dep not in index}
    )
    if unknown:
        raise RegistryError(
            "Question registry references unknown or inactive dependencies",
            details={"missing": [{"question": q, "depends_on": d} for q, d in unknown]},
        )

    pending = {q.slug: {d for d in q.depends_on if d != q.slug} for q in questions}
    self_loops = [q.slug for q in questions if q.slug in q.depends_on]
    if self_loops:
        raise RegistryError(
            "Question registry contains a dependency cycle",
            details={"cycle": self_loops},
        )

    dependents: dict[str, list[str]] = {q.slug: [] for q in questions}
    for slug, deps in pending.items():
        for dep in deps:
            dependents[dep].append(slug)

    ready = [index[slug] for slug, deps in pending.items() if not deps]
    heapq.heapify(ready)

    ordered: list[QuestionDefinition] = []
    while ready:
        question = questions[heapq.heappop(ready)]
        ordered.append(question)
        for child in dependents[question.slug]:
            pending[child].discard(question.slug)
            if not pending[child]:
                heapq.heappush(ready, index[child])

    if len(ordered) != len(questions):
        blocked = sorted(slug for slug, deps in pending.items() if deps)
        raise RegistryError(
            "Question registry contains a dependency cycle",
            details={"cycle": blocked},
        )
    return ordered
