from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from assessly.core import errors
from assessly.models.orm import Assessment, AssessmentAnswer, AssessmentStatus, Question, Test, TestQuestion
from assessly.services.authoring import get_test
from assessly.services.options import correct_option_ids


def list_assessments(db: Session, test_id: Optional[str] = None, status: Optional[AssessmentStatus] = None) -> List[Dict[str, Any]]:
    stmt = (
        select(Assessment, Test.title, Test.slug)
        .join(Test, Assessment.test_id == Test.id)
        .order_by(Assessment.started_at.desc())
    )
    if test_id:
        stmt = stmt.where(Assessment.test_id == test_id)
    if status:
        stmt = stmt.where(Assessment.status == status)
    return [
        {
            "id": a.id,
            "candidate_name": a.candidate_name,
            "status": a.status.value,
            "score_percentage": a.score_percentage,
            "started_at": a.started_at,
            "completed_at": a.completed_at,
            "test_id": a.test_id,
            "test_title": title,
            "test_slug": slug,
        }
        for a, title, slug in db.execute(stmt).all()
    ]


def question_analytics(db: Session, test_id: str) -> Dict[str, Any]:
    """Per-question success rates over COMPLETED assessments, hardest first."""
    test = get_test(db, test_id)
    completed = db.scalar(
        select(func.count(Assessment.id)).where(Assessment.test_id == test.id, Assessment.status == AssessmentStatus.COMPLETED)
    ) or 0

    correct_expr = func.coalesce(func.sum(case((AssessmentAnswer.is_correct.is_(True), 1), else_=0)), 0)
    stmt = (
        select(Question.id, Question.text, Question.type, TestQuestion.weight, func.count(AssessmentAnswer.id), correct_expr)
        .select_from(TestQuestion)
        .join(Question, Question.id == TestQuestion.question_id)
        .outerjoin(Assessment, and_(Assessment.test_id == TestQuestion.test_id, Assessment.status == AssessmentStatus.COMPLETED))
        .outerjoin(AssessmentAnswer, and_(AssessmentAnswer.assessment_id == Assessment.id, AssessmentAnswer.question_id == Question.id))
        .where(TestQuestion.test_id == test.id)
        .group_by(Question.id, Question.text, Question.type, TestQuestion.weight, TestQuestion.id)
        .order_by(TestQuestion.id)
    )
    stats = []
    for qid, text, qtype, weight, attempts, correct in db.execute(stmt).all():
        attempts, correct = int(attempts or 0), int(correct or 0)
        stats.append({
            "question_id": qid,
            "question_text": text,
            "question_type": qtype.value,
            "weight": weight,
            "total_attempts": attempts,
            "correct_attempts": correct,
            "success_rate": round(correct / attempts * 100, 1) if attempts else 0.0,
        })
    stats.sort(key=lambda s: s["success_rate"])
    return {"test_id": test.id, "test_title": test.title, "total_assessments": completed, "question_stats": stats}


def assessment_details(db: Session, assessment_id: str) -> Dict[str, Any]:
    """One attempt with every recorded answer, including the correct options for review."""
    row = db.execute(
        select(Assessment, Test.title).join(Test, Assessment.test_id == Test.id).where(Assessment.id == assessment_id)
    ).first()
    if row is None:
        raise errors.NotFound("Assessment not found")
    assessment, test_title = row

    # answers to questions detached since are kept, with no weight
    stmt = (
        select(AssessmentAnswer, Question, TestQuestion.weight)
        .join(Question, Question.id == AssessmentAnswer.question_id)
        .outerjoin(TestQuestion, and_(TestQuestion.test_id == assessment.test_id, TestQuestion.question_id == Question.id))
        .where(AssessmentAnswer.assessment_id == assessment.id)
        .order_by(TestQuestion.id.is_(None), TestQuestion.id, AssessmentAnswer.answered_at)
    )
    answers = [
        {
            "question_id": question.id,
            "question_text": question.text,
            "question_type": question.type.value,
            "weight": weight,
            "options": question.options,
            "selected_options": answer.selected_options,
            "correct_answers": correct_option_ids(question.options),
            "is_correct": answer.is_correct,
            "answered_at": answer.answered_at,
        }
        for answer, question, weight in db.execute(stmt).all()
    ]
    total_questions = db.scalar(select(func.count(TestQuestion.id)).where(TestQuestion.test_id == assessment.test_id)) or 0
    return {
        "assessment": {
            "id": assessment.id,
            "test_id": assessment.test_id,
            "test_title": test_title,
            "candidate_name": assessment.candidate_name,
            "status": assessment.status.value,
            "score_percentage": assessment.score_percentage,
            "correct_answers": sum(1 for a in answers if a["is_correct"]),
            "total_questions": total_questions,
            "started_at": assessment.started_at,
            "completed_at": assessment.completed_at,
        },
        "answers": answers,
    }
