"""
Question and test management used by authors.

The only rules enforced here beyond field validation are the visibility
compatibility checks: new links must satisfy the lattice, and a visibility
change on either side is rejected while it would break an existing link.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from assessly.core import errors
from assessly.core.config import settings
from assessly.models.orm import Question, QuestionType, Test, TestQuestion, Visibility
from assessly.services.options import options_from_list, validate_options
from assessly.services.slug import generate_slug, is_valid_slug
from assessly.services.visibility import check_question_visibility_change, check_test_visibility_change, incompatible_questions

logger = logging.getLogger(__name__)

OptionsInput = Union[Dict[str, Dict[str, Any]], List[Dict[str, Any]]]


# ========== Questions ==========

def get_question(db: Session, question_id: str) -> Question:
    question = db.get(Question, question_id)
    if question is None:
        raise errors.NotFound("Question not found")
    return question


def _normalize_options(options: OptionsInput) -> Dict[str, Dict[str, Any]]:
    if isinstance(options, list):
        return options_from_list(options)
    return {str(k): dict(v) for k, v in options.items()}


def list_questions(db: Session, include_archived: bool = False, visibility: Optional[Visibility] = None,
                   question_type: Optional[QuestionType] = None, created_by: Optional[str] = None) -> List[Question]:
    stmt = select(Question).order_by(Question.created_at.desc(), Question.id)
    if not include_archived:
        stmt = stmt.where(Question.is_archived.is_(False))
    if visibility is not None:
        stmt = stmt.where(Question.visibility == Visibility(visibility))
    if question_type is not None:
        stmt = stmt.where(Question.type == QuestionType(question_type))
    if created_by:
        stmt = stmt.where(Question.created_by == created_by)
    return list(db.scalars(stmt))


def create_question(db: Session, author: str, title: str, text: str, question_type: QuestionType,
                    options: OptionsInput, visibility: Visibility = Visibility.PUBLIC) -> Question:
    options = _normalize_options(options)
    problems = validate_options(options, question_type)
    if problems:
        raise errors.ValidationError("Invalid question options", problems)
    question = Question(title=title, text=text, type=QuestionType(question_type), options=options,
                        visibility=Visibility(visibility), created_by=author)
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def tests_using_question(db: Session, question_id: str) -> List[Test]:
    stmt = select(Test).join(TestQuestion, TestQuestion.test_id == Test.id).where(TestQuestion.question_id == question_id)
    return list(db.scalars(stmt))


def _ensure_question_visibility_change(db: Session, question: Question, new_visibility: Visibility) -> None:
    check = check_question_visibility_change(new_visibility, tests_using_question(db, question.id))
    if not check.allowed:
        logger.info(f"Rejected visibility change of question {question.id} to {Visibility(new_visibility).value}: "
                    f"{len(check.blockers)} test(s) block it")
        raise errors.IncompatibleVisibility(
            f"Question is used in tests that are less restrictive than '{Visibility(new_visibility).value}'", check.blockers
        )


def change_question_visibility(db: Session, question_id: str, new_visibility: Visibility) -> Question:
    question = get_question(db, question_id)
    _ensure_question_visibility_change(db, question, new_visibility)
    question.visibility = Visibility(new_visibility)
    db.commit()
    db.refresh(question)
    return question


def update_question(db: Session, question_id: str, title: Optional[str] = None, text: Optional[str] = None,
                    question_type: Optional[QuestionType] = None, options: Optional[OptionsInput] = None,
                    visibility: Optional[Visibility] = None) -> Question:
    """Edit a question in place.

    Type and options are validated together, so switching SINGLE to MULTIPLE
    (or back) is checked against the options the question ends up with.
    """
    question = get_question(db, question_id)
    new_type = QuestionType(question_type) if question_type is not None else question.type
    new_options = _normalize_options(options) if options is not None else question.options
    if question_type is not None or options is not None:
        problems = validate_options(new_options, new_type)
        if problems:
            raise errors.ValidationError("Invalid question options", problems)
    if visibility is not None and Visibility(visibility) != question.visibility:
        _ensure_question_visibility_change(db, question, visibility)
        question.visibility = Visibility(visibility)
    if title is not None:
        question.title = title
    if text is not None:
        question.text = text
    question.type = new_type
    question.options = new_options
    db.commit()
    db.refresh(question)
    logger.info(f"Question {question.id} updated")
    return question


def archive_question(db: Session, question_id: str) -> Question:
    question = get_question(db, question_id)
    question.is_archived = True
    db.commit()
    db.refresh(question)
    return question


# ========== Tests ==========

def get_test(db: Session, test_id: str) -> Test:
    test = db.get(Test, test_id)
    if test is None:
        raise errors.NotFound("Test not found")
    return test


def linked_questions(db: Session, test_id: str) -> List[Tuple[TestQuestion, Question]]:
    stmt = (
        select(TestQuestion, Question)
        .join(Question, TestQuestion.question_id == Question.id)
        .where(TestQuestion.test_id == test_id)
        .order_by(TestQuestion.id)
    )
    return [(link, question) for link, question in db.execute(stmt).all()]


def get_test_detail(db: Session, test_id: str) -> Tuple[Test, List[Tuple[TestQuestion, Question]]]:
    test = get_test(db, test_id)
    return test, linked_questions(db, test.id)


def list_tests(db: Session, include_archived: bool = False) -> List[Tuple[Test, int]]:
    """Tests with their linked question counts, newest first."""
    stmt = (
        select(Test, func.count(TestQuestion.id))
        .outerjoin(TestQuestion, TestQuestion.test_id == Test.id)
        .group_by(Test.id)
        .order_by(Test.created_at.desc(), Test.id)
    )
    if not include_archived:
        stmt = stmt.where(Test.is_archived.is_(False))
    return [(test, count) for test, count in db.execute(stmt).all()]


def _slug_taken(db: Session, slug: str) -> bool:
    return db.scalar(select(Test.id).where(Test.slug == slug)) is not None


def create_test(db: Session, author: str, title: str, description: Optional[str] = None, slug: Optional[str] = None,
                visibility: Visibility = Visibility.PUBLIC, pass_threshold: int = 0, is_enabled: bool = False) -> Test:
    if slug is None:
        slug = generate_slug()
        while _slug_taken(db, slug):
            slug = generate_slug()
    elif not is_valid_slug(slug):
        raise errors.ValidationError("Slug may only contain lowercase letters, digits and hyphens")
    elif _slug_taken(db, slug):
        raise errors.ValidationError(f"A test with slug '{slug}' already exists")
    test = Test(title=title, description=description, slug=slug, visibility=Visibility(visibility),
                pass_threshold=pass_threshold, is_enabled=is_enabled, created_by=author)
    db.add(test)
    db.commit()
    db.refresh(test)
    return test


def update_test(db: Session, test_id: str, title: Optional[str] = None, description: Optional[str] = None,
                is_enabled: Optional[bool] = None, pass_threshold: Optional[int] = None,
                visibility: Optional[Visibility] = None) -> Test:
    test = get_test(db, test_id)
    if visibility is not None and Visibility(visibility) != test.visibility:
        questions = [q for _, q in linked_questions(db, test.id)]
        check = check_test_visibility_change(visibility, questions)
        if not check.allowed:
            logger.info(f"Rejected visibility change of test {test.id} to {Visibility(visibility).value}: "
                        f"{len(check.blockers)} question(s) block it")
            raise errors.IncompatibleVisibility(
                f"Test contains questions that are more restrictive than '{Visibility(visibility).value}'", check.blockers
            )
        test.visibility = Visibility(visibility)
    if title is not None:
        test.title = title
    if description is not None:
        test.description = description
    if is_enabled is not None:
        test.is_enabled = is_enabled
    if pass_threshold is not None:
        test.pass_threshold = pass_threshold
    db.commit()
    db.refresh(test)
    return test


def archive_test(db: Session, test_id: str) -> Test:
    """Soft delete: the test disappears from listings and can no longer be started.

    Completed assessments keep pointing at it, so their scores stay readable.
    """
    test = get_test(db, test_id)
    test.is_archived = True
    test.is_enabled = False
    db.commit()
    db.refresh(test)
    logger.info(f"Test {test.id} archived")
    return test


def attach_questions(db: Session, test_id: str, items: Sequence[Tuple[str, int]]) -> List[Tuple[TestQuestion, Question]]:
    """Link questions to a test, all or nothing.

    Re-attaching an already linked question updates its weight.
    """
    test = get_test(db, test_id)
    if test.is_archived:
        raise errors.ValidationError("Cannot attach questions to an archived test")
    ids = [qid for qid, _ in items]
    if len(set(ids)) != len(ids):
        raise errors.ValidationError("Each question may only be listed once")
    bad_weights = [qid for qid, weight in items if weight < 1]
    if bad_weights:
        raise errors.ValidationError("Weights must be positive integers", [f"Question {qid} has weight < 1" for qid in bad_weights])

    found = {q.id: q for q in db.scalars(select(Question).where(Question.id.in_(ids)))}
    missing = [qid for qid in ids if qid not in found]
    if missing:
        raise errors.NotFound("Questions not found", {"missing": missing})
    archived = [qid for qid in ids if found[qid].is_archived]
    if archived:
        raise errors.ValidationError("Archived questions cannot be attached", [f"Question {qid} is archived" for qid in archived])

    blocked = incompatible_questions([found[qid] for qid in ids], test.visibility)
    if blocked:
        check = check_test_visibility_change(test.visibility, blocked)
        logger.info(f"Rejected attaching {len(blocked)} question(s) to test {test.id}: visibility mismatch")
        raise errors.IncompatibleVisibility(
            f"Questions are more restrictive than the test visibility '{test.visibility.value}'", check.blockers
        )

    existing = {
        link.question_id: link
        for link in db.scalars(select(TestQuestion).where(TestQuestion.test_id == test.id, TestQuestion.question_id.in_(ids)))
    }
    for qid, weight in items:
        if qid in existing:
            existing[qid].weight = weight
        else:
            db.add(TestQuestion(test_id=test.id, question_id=qid, weight=weight))
    db.commit()
    return linked_questions(db, test.id)


def detach_question(db: Session, test_id: str, question_id: str) -> None:
    test = get_test(db, test_id)
    link = db.scalar(select(TestQuestion).where(TestQuestion.test_id == test.id, TestQuestion.question_id == question_id))
    if link is None:
        raise errors.NotFound("Question is not attached to this test")
    db.delete(link)
    db.commit()


def get_public_test(db: Session, slug: str) -> Dict[str, Any]:
    test = db.scalar(select(Test).where(Test.slug == slug))
    if test is None or test.is_archived:
        raise errors.NotFound("Test not found")
    if not test.is_enabled:
        raise errors.TestDisabled("This test is currently disabled")
    return {
        "id": test.id,
        "title": test.title,
        "description": test.description,
        "slug": test.slug,
        "question_count": len(linked_questions(db, test.id)),
        "pass_threshold": test.pass_threshold,
        "time_limit_minutes": settings.ASSESSMENT_TIMEOUT_MINUTES,
    }
