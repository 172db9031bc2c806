from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from progression.database import get_db
from progression.models import (
    User, Registration, TestAttempt, AttemptStatus, ScreeningStatus, PresentationStatus,
    QualificationStatus, AwardType, authoritative_attempt,
)
from progression.auth.dependencies import get_current_user
from progression.services.workflow import get_event, register_participant, user_registrations, event_awards

router = APIRouter(prefix="/events", tags=["registrations"])


class RegistrationCreate(BaseModel):
    amount_paid: Optional[Decimal] = Field(default=None, ge=0)


class AttemptSummary(BaseModel):
    id: int
    screening_test_id: int
    score: int
    correct_count: int
    total_questions: int
    passed: bool
    status: AttemptStatus
    time_taken_seconds: int
    tab_switches: int
    started_at: datetime
    submitted_at: Optional[datetime]

    class Config:
        from_attributes = True


class RegistrationResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    full_name: str
    email: str
    profile_url: Optional[str]
    registered_at: Optional[datetime]
    amount_paid: Optional[float]
    attended: bool
    screening_status: ScreeningStatus
    screening_test_id: Optional[int]
    presentation_status: PresentationStatus
    repository_url: Optional[str]
    demo_url: Optional[str]
    presentation_url: Optional[str]
    presentation_notes: Optional[str]
    presentation_submitted_at: Optional[datetime]
    qualification_status: QualificationStatus
    qualification_remarks: Optional[str]
    qualified_at: Optional[datetime]
    award_type: AwardType
    award_assigned_at: Optional[datetime]
    award_assigned_by_name: Optional[str]
    admin_notes: Optional[str]
    admin_score: Optional[int]
    test_attempt: Optional[AttemptSummary]


def build_registration_response(
    registration: Registration,
    user: User,
    attempt: Optional[TestAttempt],
    award_assigned_by: Optional[User] = None,
) -> RegistrationResponse:
    return RegistrationResponse(
        id=registration.id,
        user_id=registration.user_id,
        event_id=registration.event_id,
        full_name=user.full_name,
        email=user.email,
        profile_url=user.profile_url,
        registered_at=registration.registered_at,
        amount_paid=float(registration.amount_paid) if registration.amount_paid is not None else None,
        attended=registration.attended,
        screening_status=registration.screening_status,
        screening_test_id=registration.screening_test_id,
        presentation_status=registration.presentation_status,
        repository_url=registration.repository_url,
        demo_url=registration.demo_url,
        presentation_url=registration.presentation_url,
        presentation_notes=registration.presentation_notes,
        presentation_submitted_at=registration.presentation_submitted_at,
        qualification_status=registration.qualification_status,
        qualification_remarks=registration.qualification_remarks,
        qualified_at=registration.qualified_at,
        award_type=registration.award_type,
        award_assigned_at=registration.award_assigned_at,
        award_assigned_by_name=award_assigned_by.full_name if award_assigned_by else None,
        admin_notes=registration.admin_notes,
        admin_score=registration.admin_score,
        test_attempt=AttemptSummary.model_validate(attempt) if attempt else None,
    )


def registration_response(db: Session, registration: Registration) -> RegistrationResponse:
    """Response for a single registration, loading its attempt and award assigner."""
    award_assigned_by = None
    if registration.award_assigned_by:
        award_assigned_by = db.query(User).filter(User.id == registration.award_assigned_by).first()
    return build_registration_response(
        registration,
        registration.user,
        authoritative_attempt(registration.test_attempts),
        award_assigned_by,
    )


@router.post("/{event_id}/registrations", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_for_event(
    event_id: int,
    registration_data: Optional[RegistrationCreate] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Register the current user for an event"""
    event = get_event(db, event_id)
    amount_paid = registration_data.amount_paid if registration_data else None
    registration = register_participant(db, current_user, event, amount_paid=amount_paid)
    return registration_response(db, registration)


class MyRegistrationResponse(BaseModel):
    id: int
    event_id: int
    event_title: str
    registered_at: Optional[datetime]
    attended: bool
    screening_status: ScreeningStatus
    presentation_status: PresentationStatus
    qualification_status: QualificationStatus
    award_type: AwardType


class AwardeeResponse(BaseModel):
    registration_id: int
    user_id: int
    full_name: str
    profile_url: Optional[str]
    award_type: AwardType
    award_assigned_at: Optional[datetime]


class EventAwardsResponse(BaseModel):
    event_id: int
    winners: List[AwardeeResponse]
    runners_up: List[AwardeeResponse]


def _awardee(registration: Registration) -> AwardeeResponse:
    return AwardeeResponse(
        registration_id=registration.id,
        user_id=registration.user_id,
        full_name=registration.user.full_name,
        profile_url=registration.user.profile_url,
        award_type=registration.award_type,
        award_assigned_at=registration.award_assigned_at,
    )


@router.get("/registrations/mine", response_model=List[MyRegistrationResponse])
async def list_my_registrations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get the current user's registrations, newest first"""
    return [
        MyRegistrationResponse(
            id=registration.id,
            event_id=registration.event_id,
            event_title=registration.event.title,
            registered_at=registration.registered_at,
            attended=registration.attended,
            screening_status=registration.screening_status,
            presentation_status=registration.presentation_status,
            qualification_status=registration.qualification_status,
            award_type=registration.award_type,
        )
        for registration in user_registrations(db, current_user.id)
    ]


@router.get("/{event_id}/winners", response_model=EventAwardsResponse)
async def get_event_winners(
    event_id: int,
    db: Session = Depends(get_db)
):
    """Get the winners and runners-up of an event (public)"""
    get_event(db, event_id)
    winners, runners_up = event_awards(db, event_id)
    return EventAwardsResponse(
        event_id=event_id,
        winners=[_awardee(r) for r in winners],
        runners_up=[_awardee(r) for r in runners_up],
    )
