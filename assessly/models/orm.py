import enum
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Enum as SQLEnum, Float, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from assessly.core.database import utcnow

# SQLite only auto-increments INTEGER PRIMARY KEY columns
AutoId = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase): pass


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum(cls):
    return SQLEnum(cls, name=cls.__name__.lower(), values_callable=lambda e: [m.value for m in e], native_enum=False, length=20)


class QuestionType(str, enum.Enum):
    SINGLE = "SINGLE"
    MULTIPLE = "MULTIPLE"


class Visibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"


class AssessmentStatus(str, enum.Enum):
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        return self is not AssessmentStatus.STARTED


# ========== Content Models ==========

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_created_by", "created_by"),
        Index("idx_questions_visibility", "visibility"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[QuestionType] = mapped_column(_enum(QuestionType), nullable=False)
    # {"0": {"text": ..., "is_correct": bool, "explanation": ...}, ...}
    options: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    visibility: Mapped[Visibility] = mapped_column(_enum(Visibility), nullable=False, default=Visibility.PUBLIC)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    test_links: Mapped[List["TestQuestion"]] = relationship(back_populates="question")


class Test(Base):
    __tablename__ = "tests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    visibility: Mapped[Visibility] = mapped_column(_enum(Visibility), nullable=False, default=Visibility.PUBLIC)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pass_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    question_links: Mapped[List["TestQuestion"]] = relationship(
        back_populates="test", cascade="all, delete-orphan", order_by="TestQuestion.id"
    )


class TestQuestion(Base):
    __tablename__ = "test_questions"
    __table_args__ = (
        UniqueConstraint("test_id", "question_id", name="uq_test_question"),
        Index("idx_tq_question", "question_id"),
    )

    # attachment order follows id
    id: Mapped[int] = mapped_column(AutoId, primary_key=True, autoincrement=True)
    test_id: Mapped[str] = mapped_column(String(36), ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id", ondelete="RESTRICT"), nullable=False)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    test: Mapped["Test"] = relationship(back_populates="question_links")
    question: Mapped["Question"] = relationship(back_populates="test_links")


# ========== Delivery Models ==========

class Assessment(Base):
    __tablename__ = "assessments"
    __table_args__ = (
        Index("idx_assessments_test", "test_id"),
        Index("idx_assessments_status_started", "status", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    test_id: Mapped[str] = mapped_column(String(36), ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
    candidate_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[AssessmentStatus] = mapped_column(_enum(AssessmentStatus), nullable=False, default=AssessmentStatus.STARTED)
    score_percentage: Mapped[Optional[float]] = mapped_column(Float)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    test: Mapped["Test"] = relationship()
    answers: Mapped[List["AssessmentAnswer"]] = relationship(back_populates="assessment", cascade="all, delete-orphan")


class AssessmentAnswer(Base):
    __tablename__ = "assessment_answers"
    __table_args__ = (
        UniqueConstraint("assessment_id", "question_id", name="uq_assessment_answer"),
    )

    id: Mapped[int] = mapped_column(AutoId, primary_key=True, autoincrement=True)
    assessment_id: Mapped[str] = mapped_column(String(36), ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id", ondelete="RESTRICT"), nullable=False)
    selected_options: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    # null until the assessment is submitted
    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean)
    answered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    assessment: Mapped["Assessment"] = relationship(back_populates="answers")
