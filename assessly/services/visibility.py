"""
Visibility lattice: public (0) < private (1) < protected (2).

A question may belong to a test only when the test is at least as
restrictive as the question. The rule is checked when links are created
and when either side changes visibility; it is not a database constraint,
so rows written around these checks may already violate it.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union

from assessly.models.orm import Visibility

VISIBILITY_LEVEL: Dict[Visibility, int] = {
    Visibility.PUBLIC: 0,
    Visibility.PRIVATE: 1,
    Visibility.PROTECTED: 2,
}


def level(visibility: Union[Visibility, str]) -> int:
    return VISIBILITY_LEVEL[Visibility(visibility)]


def can_attach(question_visibility: Union[Visibility, str], test_visibility: Union[Visibility, str]) -> bool:
    return level(test_visibility) >= level(question_visibility)


@dataclass
class VisibilityCheck:
    allowed: bool
    blockers: List[Dict[str, Any]] = field(default_factory=list)


def _describe(entity) -> Dict[str, Any]:
    return {"id": entity.id, "title": entity.title, "visibility": Visibility(entity.visibility).value}


def incompatible_questions(questions: Iterable, test_visibility: Union[Visibility, str]) -> List:
    return [q for q in questions if not can_attach(q.visibility, test_visibility)]


def check_test_visibility_change(new_visibility: Union[Visibility, str], questions: Iterable) -> VisibilityCheck:
    """Questions linked to the test that would no longer fit under ``new_visibility``."""
    blocked = incompatible_questions(questions, new_visibility)
    return VisibilityCheck(allowed=not blocked, blockers=[_describe(q) for q in blocked])


def check_question_visibility_change(new_visibility: Union[Visibility, str], tests: Iterable) -> VisibilityCheck:
    """Tests linking the question that are less restrictive than ``new_visibility``."""
    blocked = [t for t in tests if not can_attach(new_visibility, t.visibility)]
    return VisibilityCheck(allowed=not blocked, blockers=[_describe(t) for t in blocked])
