from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
from progression.database import get_db
from progression.models import User, AttemptStatus, ScreeningStatus
from progression.auth.dependencies import get_current_user
from progression.services.workflow import get_user_registration
from progression.services.screening_tests import exam_instructions
from progression.services.exam_sessions import assigned_test, start_exam_session, submit_exam

router = APIRouter(prefix="/screening", tags=["screening"])


class InstructionsResponse(BaseModel):
    title: str
    instructions: Optional[str]
    duration_minutes: int
    total_questions: int
    passing_score: int
    deadline: Optional[datetime]
    rules: List[str]
    screening_status: ScreeningStatus
    can_start: bool


class PaperQuestion(BaseModel):
    id: int
    prompt: str
    options: List[str]


class ExamPaper(BaseModel):
    screening_test_id: int
    title: str
    instructions: Optional[str]
    timer_minutes: int
    passing_score: int
    total_questions: int
    max_tab_switches: int
    questions: List[PaperQuestion]


class ExamStartResponse(BaseModel):
    token: str
    registration_id: int
    resumed: bool
    started_at: datetime
    deadline: datetime
    remaining_seconds: int
    paper: ExamPaper


class ExamSubmission(BaseModel):
    token: str
    answers: Dict[str, int] = Field(default_factory=dict)
    tab_switches: int = Field(default=0, ge=0)
    status: AttemptStatus = AttemptStatus.SUBMITTED


class SubmissionResponse(BaseModel):
    attempt_id: int
    score: int
    correct_count: int
    total_questions: int
    passed: bool
    passing_score: int
    status: AttemptStatus
    time_taken_seconds: int
    tab_switches: int


@router.get("/{event_id}/instructions", response_model=InstructionsResponse)
async def get_instructions(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get the rules of the screening test sent to the current user"""
    registration = get_user_registration(db, current_user.id, event_id)
    screening_test = assigned_test(db, registration)
    return InstructionsResponse(
        **exam_instructions(screening_test),
        screening_status=registration.screening_status,
        can_start=registration.screening_status == ScreeningStatus.SENT,
    )


@router.post("/{event_id}/start", response_model=ExamStartResponse)
async def start_exam(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Start or resume a timed exam session; the returned token carries its start time and deadline"""
    return start_exam_session(db, current_user, event_id)


@router.post("/submit", response_model=SubmissionResponse)
async def submit_answers(
    submission: ExamSubmission,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Submit the answers of an exam session for grading"""
    attempt, screening_test = submit_exam(
        db,
        current_user,
        submission.token,
        submission.answers,
        submission.tab_switches,
        submission.status,
    )
    return SubmissionResponse(
        attempt_id=attempt.id,
        score=attempt.score,
        correct_count=attempt.correct_count,
        total_questions=attempt.total_questions,
        passed=attempt.passed,
        passing_score=screening_test.passing_score,
        status=attempt.status,
        time_taken_seconds=attempt.time_taken_seconds,
        tab_switches=attempt.tab_switches,
    )
