"""
Assessment lifecycle: STARTED -> COMPLETED | ABANDONED.

Every transition out of STARTED is a conditional UPDATE guarded on
``status = 'STARTED'``, so concurrent submits, inline expiry checks and the
background sweep converge on exactly one terminal state. Answer writes and
the scoring pass hold the assessment row lock (``SELECT ... FOR UPDATE``)
for the whole transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from assessly.core import errors
from assessly.core.config import settings
from assessly.core.database import utcnow
from assessly.models.orm import Assessment, AssessmentAnswer, AssessmentStatus, Question, Test, TestQuestion
from assessly.services.authoring import linked_questions
from assessly.services.options import correct_option_ids, strip_answers
from assessly.services.scoring import is_answer_correct, score_percentage, weighted_totals

logger = logging.getLogger(__name__)


def expiry_cutoff(now: datetime, timeout: timedelta) -> datetime:
    """Assessments started before this instant are expired."""
    return now - timeout


def is_expired(started_at: datetime, now: datetime, timeout: timedelta) -> bool:
    return started_at < expiry_cutoff(now, timeout)


def state_error(status: AssessmentStatus) -> errors.InvalidState:
    if status is AssessmentStatus.COMPLETED:
        return errors.AlreadyCompleted()
    return errors.Abandoned()


@dataclass
class StartResult:
    assessment_id: str
    test: Dict[str, Any]
    questions: List[Dict[str, Any]]
    started_at: datetime
    expires_at: datetime

    @property
    def total_questions(self) -> int:
        return len(self.questions)


@dataclass
class AnswerProgress:
    question_id: str
    answered_questions: int
    total_questions: int


@dataclass
class SubmitResult:
    assessment_id: str
    status: AssessmentStatus
    score_percentage: float
    total_questions: int
    correct_count: int
    completed_at: datetime
    pass_threshold: int

    @property
    def passed(self) -> bool:
        return self.score_percentage >= self.pass_threshold


@dataclass
class VerifyResult:
    valid: bool
    status: AssessmentStatus
    started_at: datetime
    expires_at: datetime
    remaining_seconds: int


class AssessmentEngine:
    def __init__(self, db: Session, timeout: Optional[timedelta] = None, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.timeout = timeout or settings.assessment_timeout
        self.clock = clock

    # ---------- queries ----------

    def _load(self, assessment_id: str, lock: bool = False) -> Assessment:
        stmt = select(Assessment).where(Assessment.id == assessment_id).execution_options(populate_existing=True)
        if lock:
            stmt = stmt.with_for_update()
        assessment = self.db.scalar(stmt)
        if assessment is None:
            raise errors.NotFound("Assessment not found")
        return assessment

    # ---------- transitions ----------

    def _abandon(self, assessment_id: str) -> bool:
        result = self.db.execute(
            update(Assessment)
            .where(Assessment.id == assessment_id, Assessment.status == AssessmentStatus.STARTED)
            .values(status=AssessmentStatus.ABANDONED)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def _ensure_live(self, assessment: Assessment, now: datetime) -> None:
        if assessment.status.is_terminal:
            raise state_error(assessment.status)
        if is_expired(assessment.started_at, now, self.timeout):
            if self._abandon(assessment.id):
                logger.info(f"Assessment {assessment.id} expired; marked ABANDONED")
            raise errors.Expired()

    def start(self, test_id: str, candidate_name: str) -> StartResult:
        test = self.db.get(Test, test_id)
        if test is None or test.is_archived:
            raise errors.NotFound("Test not found")
        if not test.is_enabled:
            raise errors.TestDisabled("This test is currently disabled and cannot be started.")

        now = self.clock()
        assessment = Assessment(test_id=test.id, candidate_name=candidate_name, status=AssessmentStatus.STARTED, started_at=now)
        self.db.add(assessment)
        self.db.flush()
        links = linked_questions(self.db, test.id)
        questions = [
            {
                "id": question.id,
                "text": question.text,
                "type": question.type.value,
                "options": strip_answers(question.options),
                "weight": link.weight,
                "question_number": number,
            }
            for number, (link, question) in enumerate(links, start=1)
        ]
        result = StartResult(
            assessment_id=assessment.id,
            test={"id": test.id, "title": test.title, "description": test.description, "pass_threshold": test.pass_threshold},
            questions=questions,
            started_at=now,
            expires_at=now + self.timeout,
        )
        self.db.commit()
        logger.info(f"Assessment {result.assessment_id} started for test {test_id} ({len(questions)} questions)")
        return result

    @staticmethod
    def _normalize_selection(question: Question, selected: Iterable) -> List[str]:
        ids = {str(s) for s in selected}
        if not ids:
            raise errors.ValidationError("At least one option must be selected")
        unknown = sorted(ids - set(question.options))
        if unknown:
            raise errors.ValidationError("Unknown option ids", [f"Option {oid} does not exist on question {question.id}" for oid in unknown])
        return sorted(ids, key=lambda s: (len(s), s))

    def record_answer(self, assessment_id: str, question_id: str, selected: Iterable) -> AnswerProgress:
        now = self.clock()
        try:
            assessment = self._load(assessment_id, lock=True)
            self._ensure_live(assessment, now)

            question = self.db.scalar(
                select(Question)
                .join(TestQuestion, TestQuestion.question_id == Question.id)
                .where(TestQuestion.test_id == assessment.test_id, Question.id == question_id)
            )
            if question is None:
                raise errors.ValidationError(f"Question {question_id} is not part of this test")
            selection = self._normalize_selection(question, selected)

            answer = self.db.scalar(
                select(AssessmentAnswer).where(
                    AssessmentAnswer.assessment_id == assessment.id, AssessmentAnswer.question_id == question.id
                )
            )
            if answer is None:
                self.db.add(AssessmentAnswer(assessment_id=assessment.id, question_id=question.id, selected_options=selection, answered_at=now))
            else:
                answer.selected_options = selection
                answer.answered_at = now
                answer.is_correct = None
            self.db.flush()

            answered = self.db.scalar(
                select(func.count(AssessmentAnswer.id))
                .join(TestQuestion, (TestQuestion.question_id == AssessmentAnswer.question_id) & (TestQuestion.test_id == assessment.test_id))
                .where(AssessmentAnswer.assessment_id == assessment.id)
            )
            total = self.db.scalar(select(func.count(TestQuestion.id)).where(TestQuestion.test_id == assessment.test_id))
            progress = AnswerProgress(question_id=question.id, answered_questions=answered or 0, total_questions=total or 0)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return progress

    def submit(self, assessment_id: str) -> SubmitResult:
        now = self.clock()
        try:
            assessment = self._load(assessment_id, lock=True)
            self._ensure_live(assessment, now)

            claimed = self.db.execute(
                update(Assessment)
                .where(Assessment.id == assessment.id, Assessment.status == AssessmentStatus.STARTED)
                .values(status=AssessmentStatus.COMPLETED, completed_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                # another request already moved it out of STARTED
                self.db.rollback()
                raise state_error(self._load(assessment_id).status)

            answers = {
                a.question_id: a
                for a in self.db.scalars(select(AssessmentAnswer).where(AssessmentAnswer.assessment_id == assessment.id))
            }
            verdicts = []
            for link, question in linked_questions(self.db, assessment.test_id):
                answer = answers.get(question.id)
                correct = answer is not None and is_answer_correct(question.type, answer.selected_options, correct_option_ids(question.options))
                if answer is not None:
                    answer.is_correct = correct
                verdicts.append((correct, link.weight))

            earned, maximum = weighted_totals(verdicts)
            percentage = score_percentage(earned, maximum)
            self.db.flush()
            self.db.execute(
                update(Assessment)
                .where(Assessment.id == assessment.id)
                .values(score_percentage=percentage)
                .execution_options(synchronize_session=False)
            )
            pass_threshold = self.db.scalar(select(Test.pass_threshold).where(Test.id == assessment.test_id)) or 0
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Assessment {assessment_id} completed with score {percentage:.2f}% ({earned}/{maximum})")
        return SubmitResult(
            assessment_id=assessment_id,
            status=AssessmentStatus.COMPLETED,
            score_percentage=percentage,
            total_questions=len(verdicts),
            correct_count=sum(1 for correct, _ in verdicts if correct),
            completed_at=now,
            pass_threshold=pass_threshold,
        )

    def verify(self, assessment_id: str) -> VerifyResult:
        now = self.clock()
        assessment = self._load(assessment_id)
        self._ensure_live(assessment, now)
        expires_at = assessment.started_at + self.timeout
        return VerifyResult(
            valid=True,
            status=assessment.status,
            started_at=assessment.started_at,
            expires_at=expires_at,
            remaining_seconds=max(0, int((expires_at - now).total_seconds())),
        )
