from datetime import datetime
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, constr
from sqlalchemy.orm import Session

from assessly.core.auth import Principal, require_author
from assessly.core.database import get_db
from assessly.models.orm import QuestionType, Visibility
from assessly.services import authoring

router = APIRouter()

class OptionIn(BaseModel):
    text: str
    is_correct: bool
    explanation: Optional[str] = None

class QuestionCreate(BaseModel):
    title: constr(min_length=1, max_length=200)
    text: constr(min_length=1)
    type: QuestionType
    options: Union[Dict[str, OptionIn], List[OptionIn]]
    visibility: Visibility = Visibility.PUBLIC

class QuestionUpdate(BaseModel):
    title: Optional[constr(min_length=1, max_length=200)] = None
    text: Optional[constr(min_length=1)] = None
    type: Optional[QuestionType] = None
    options: Optional[Union[Dict[str, OptionIn], List[OptionIn]]] = None
    visibility: Optional[Visibility] = None

class VisibilityChange(BaseModel):
    visibility: Visibility

class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    title: str
    text: str
    type: QuestionType
    options: Dict[str, dict]
    visibility: Visibility
    is_archived: bool
    created_by: str
    created_at: datetime

def _options(options):
    if isinstance(options, list):
        return [o.model_dump(exclude_none=True) for o in options]
    return {k: o.model_dump(exclude_none=True) for k, o in options.items()}

@router.get("", dependencies=[Depends(require_author)])
def list_questions(include_archived: bool = False, visibility: Optional[Visibility] = None, type: Optional[QuestionType] = None,
                   created_by: Optional[str] = None, db: Session = Depends(get_db)):
    questions = authoring.list_questions(db, include_archived, visibility, type, created_by)
    return {"questions": [QuestionOut.model_validate(q) for q in questions], "total": len(questions)}

@router.post("", response_model=QuestionOut, status_code=201)
def create_question(payload: QuestionCreate, user: Principal = Depends(require_author), db: Session = Depends(get_db)):
    return authoring.create_question(db, user.sub, payload.title, payload.text, payload.type, _options(payload.options), payload.visibility)

@router.get("/{question_id}", response_model=QuestionOut, dependencies=[Depends(require_author)])
def get_question(question_id: str, db: Session = Depends(get_db)):
    return authoring.get_question(db, question_id)

@router.put("/{question_id}", response_model=QuestionOut, dependencies=[Depends(require_author)])
def update_question(question_id: str, payload: QuestionUpdate, db: Session = Depends(get_db)):
    return authoring.update_question(db, question_id, payload.title, payload.text, payload.type,
                                     _options(payload.options) if payload.options is not None else None, payload.visibility)

@router.patch("/{question_id}/visibility", response_model=QuestionOut, dependencies=[Depends(require_author)])
def change_visibility(question_id: str, payload: VisibilityChange, db: Session = Depends(get_db)):
    return authoring.change_question_visibility(db, question_id, payload.visibility)

@router.delete("/{question_id}", response_model=QuestionOut, dependencies=[Depends(require_author)])
def archive_question(question_id: str, db: Session = Depends(get_db)):
    return authoring.archive_question(db, question_id)
