from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from progression.database import get_db
from progression.models import User, TestAttempt
from progression.auth.dependencies import require_admin
from progression.services.workflow import get_event
from progression.services.screening_tests import get_active_test, save_screening_test

router = APIRouter(prefix="/admin/events", tags=["admin-screening-tests"])


class QuestionIn(BaseModel):
    prompt: str
    options: List[str]
    correct_option: int
    points: int = Field(default=1, ge=1)


class ScreeningTestUpsert(BaseModel):
    title: Optional[str] = None
    instructions: Optional[str] = None
    timer_minutes: Optional[int] = None
    passing_score: Optional[int] = None
    deadline: Optional[datetime] = None
    questions: List[QuestionIn]


class QuestionOut(BaseModel):
    id: int
    prompt: str
    options: List[str]
    correct_option: int
    points: int
    order_index: int

    class Config:
        from_attributes = True


class ScreeningTestResponse(BaseModel):
    id: int
    event_id: int
    title: str
    instructions: Optional[str]
    timer_minutes: int
    passing_score: int
    deadline: Optional[datetime]
    is_active: bool
    total_questions: int
    attempt_count: int
    questions: List[QuestionOut]


def _test_response(db: Session, screening_test) -> ScreeningTestResponse:
    attempt_count = db.query(TestAttempt).filter(TestAttempt.screening_test_id == screening_test.id).count()
    return ScreeningTestResponse(
        id=screening_test.id,
        event_id=screening_test.event_id,
        title=screening_test.title,
        instructions=screening_test.instructions,
        timer_minutes=screening_test.timer_minutes,
        passing_score=screening_test.passing_score,
        deadline=screening_test.deadline,
        is_active=screening_test.is_active,
        total_questions=screening_test.total_questions,
        attempt_count=attempt_count,
        questions=[QuestionOut.model_validate(q) for q in screening_test.questions],
    )


@router.get("/{event_id}/screening-test", response_model=ScreeningTestResponse)
async def get_screening_test(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Get the active screening test of an event, answers included (Admin only)"""
    get_event(db, event_id)
    return _test_response(db, get_active_test(db, event_id))


@router.put("/{event_id}/screening-test", response_model=ScreeningTestResponse)
async def put_screening_test(
    event_id: int,
    test_data: ScreeningTestUpsert,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Create or replace the screening test of an event (Admin only)"""
    get_event(db, event_id)
    screening_test = save_screening_test(
        db,
        event_id,
        [question.model_dump() for question in test_data.questions],
        current_user,
        title=test_data.title,
        instructions=test_data.instructions,
        timer_minutes=test_data.timer_minutes,
        passing_score=test_data.passing_score,
        deadline=test_data.deadline,
    )
    return _test_response(db, screening_test)
