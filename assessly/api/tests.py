from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, conint, constr
from sqlalchemy.orm import Session

from assessly.core.auth import Principal, require_author
from assessly.core.database import get_db
from assessly.models.orm import QuestionType, Visibility
from assessly.services import authoring, reporting

router = APIRouter()
public_router = APIRouter()

class TestCreate(BaseModel):
    title: constr(min_length=1, max_length=200)
    description: Optional[str] = None
    slug: Optional[constr(min_length=1, max_length=100)] = None
    visibility: Visibility = Visibility.PUBLIC
    pass_threshold: conint(ge=0, le=100) = 0
    is_enabled: bool = False

class TestUpdate(BaseModel):
    title: Optional[constr(min_length=1, max_length=200)] = None
    description: Optional[str] = None
    visibility: Optional[Visibility] = None
    pass_threshold: Optional[conint(ge=0, le=100)] = None
    is_enabled: Optional[bool] = None

class AttachItem(BaseModel):
    question_id: str
    weight: conint(ge=1) = 1

class AttachRequest(BaseModel):
    questions: List[AttachItem] = Field(min_length=1)

class LinkedQuestion(BaseModel):
    question_id: str
    title: str
    type: QuestionType
    visibility: Visibility
    weight: int

class TestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    title: str
    description: Optional[str] = None
    slug: str
    visibility: Visibility
    pass_threshold: int
    is_enabled: bool
    is_archived: bool
    created_by: str
    created_at: datetime

class TestListItem(TestOut):
    question_count: int = 0

class TestDetail(TestOut):
    questions: List[LinkedQuestion] = []
    max_score: int = 0

def _detail(test, links) -> TestDetail:
    questions = [LinkedQuestion(question_id=q.id, title=q.title, type=q.type, visibility=q.visibility, weight=l.weight) for l, q in links]
    return TestDetail(**TestOut.model_validate(test).model_dump(), questions=questions, max_score=sum(q.weight for q in questions))

@router.post("", response_model=TestOut, status_code=201)
def create_test(payload: TestCreate, user: Principal = Depends(require_author), db: Session = Depends(get_db)):
    return authoring.create_test(db, user.sub, payload.title, payload.description, payload.slug,
                                 payload.visibility, payload.pass_threshold, payload.is_enabled)

@router.get("", dependencies=[Depends(require_author)])
def list_tests(include_archived: bool = False, db: Session = Depends(get_db)):
    rows = authoring.list_tests(db, include_archived)
    tests = [TestListItem(**TestOut.model_validate(t).model_dump(), question_count=n) for t, n in rows]
    return {"tests": tests, "total": len(tests)}

@router.get("/{test_id}", response_model=TestDetail, dependencies=[Depends(require_author)])
def get_test(test_id: str, db: Session = Depends(get_db)):
    return _detail(*authoring.get_test_detail(db, test_id))

@router.patch("/{test_id}", response_model=TestOut, dependencies=[Depends(require_author)])
def update_test(test_id: str, payload: TestUpdate, db: Session = Depends(get_db)):
    return authoring.update_test(db, test_id, **payload.model_dump(exclude_none=True))

@router.delete("/{test_id}", response_model=TestOut, dependencies=[Depends(require_author)])
def archive_test(test_id: str, db: Session = Depends(get_db)):
    return authoring.archive_test(db, test_id)

@router.post("/{test_id}/questions", response_model=TestDetail, dependencies=[Depends(require_author)])
def attach_questions(test_id: str, payload: AttachRequest, db: Session = Depends(get_db)):
    links = authoring.attach_questions(db, test_id, [(i.question_id, i.weight) for i in payload.questions])
    return _detail(authoring.get_test(db, test_id), links)

@router.delete("/{test_id}/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_author)])
def detach_question(test_id: str, question_id: str, db: Session = Depends(get_db)):
    authoring.detach_question(db, test_id, question_id)

@router.get("/{test_id}/analytics/questions", dependencies=[Depends(require_author)])
def question_analytics(test_id: str, db: Session = Depends(get_db)):
    return reporting.question_analytics(db, test_id)

@public_router.get("/tests/{slug}")
def public_test(slug: str, db: Session = Depends(get_db)):
    return authoring.get_public_test(db, slug)
