from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, constr
from typing import Dict, List, Optional, Union
from datetime import datetime
from sqlalchemy.orm import Session
from assessly.core.database import get_db
from assessly.core.auth import require_author
from assessly.models.orm import AssessmentStatus, QuestionType
from assessly.services.assessments import AssessmentEngine
from assessly.services import reporting

router = APIRouter()

class StartRequest(BaseModel):
  test_id: str
  candidate_name: constr(strip_whitespace=True, min_length=2, max_length=100)

class TestSummary(BaseModel):
  id: str
  title: str
  description: Optional[str] = None
  pass_threshold: int

class CandidateQuestion(BaseModel):
  id: str
  text: str
  type: QuestionType
  options: Dict[str, Dict[str, str]]
  weight: int
  question_number: int

class AssessmentStarted(BaseModel):
  assessment_id: str
  test: TestSummary
  questions: List[CandidateQuestion]
  total_questions: int
  started_at: datetime
  expires_at: datetime

class AnswerSubmit(BaseModel):
  question_id: str
  selected_options: List[Union[int, str]] = Field(min_length=1)

class AnswerRecorded(BaseModel):
  message: str = "Answer recorded"
  question_id: str
  answered_questions: int
  total_questions: int

class AssessmentSubmitted(BaseModel):
  assessment_id: str
  status: AssessmentStatus
  score_percentage: float
  total_questions: int
  correct_count: int
  completed_at: datetime
  pass_threshold: int
  passed: bool

class AssessmentVerified(BaseModel):
  valid: bool
  status: AssessmentStatus
  started_at: datetime
  expires_at: datetime
  remaining_seconds: int

def get_engine(db: Session = Depends(get_db)) -> AssessmentEngine:
  return AssessmentEngine(db)

@router.get("", dependencies=[Depends(require_author)])
def list_assessments(test_id: Optional[str] = None, status: Optional[AssessmentStatus] = None, db: Session = Depends(get_db)):
  rows = reporting.list_assessments(db, test_id, status)
  return {"assessments": rows, "total": len(rows)}

@router.get("/{assessment_id}/details", dependencies=[Depends(require_author)])
def assessment_details(assessment_id: str, db: Session = Depends(get_db)):
  return reporting.assessment_details(db, assessment_id)

@router.post("/start", response_model=AssessmentStarted, status_code=201)
def start_assessment(payload: StartRequest, engine: AssessmentEngine = Depends(get_engine)):
  r = engine.start(payload.test_id, payload.candidate_name)
  return AssessmentStarted(assessment_id=r.assessment_id, test=TestSummary(**r.test), questions=r.questions,
                           total_questions=r.total_questions, started_at=r.started_at, expires_at=r.expires_at)

@router.post("/{assessment_id}/answer", response_model=AnswerRecorded)
def record_answer(assessment_id: str, payload: AnswerSubmit, engine: AssessmentEngine = Depends(get_engine)):
  p = engine.record_answer(assessment_id, payload.question_id, payload.selected_options)
  return AnswerRecorded(question_id=p.question_id, answered_questions=p.answered_questions, total_questions=p.total_questions)

@router.post("/{assessment_id}/submit", response_model=AssessmentSubmitted)
def submit_assessment(assessment_id: str, engine: AssessmentEngine = Depends(get_engine)):
  r = engine.submit(assessment_id)
  return AssessmentSubmitted(assessment_id=r.assessment_id, status=r.status, score_percentage=r.score_percentage,
                             total_questions=r.total_questions, correct_count=r.correct_count, completed_at=r.completed_at,
                             pass_threshold=r.pass_threshold, passed=r.passed)

@router.get("/{assessment_id}/verify", response_model=AssessmentVerified)
def verify_assessment(assessment_id: str, engine: AssessmentEngine = Depends(get_engine)):
  v = engine.verify(assessment_id)
  return AssessmentVerified(valid=v.valid, status=v.status, started_at=v.started_at, expires_at=v.expires_at, remaining_seconds=v.remaining_seconds)
