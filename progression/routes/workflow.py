from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from progression.database import get_db
from progression.models import (
    User, ScreeningStatus, PresentationStatus, QualificationStatus, AwardType, authoritative_attempt,
)
from progression.auth.dependencies import get_current_user
from progression.routes.registrations import AttemptSummary
from progression.services.workflow import (
    GateState, get_user_registration, next_step_gate, submit_presentation,
)

router = APIRouter(prefix="/workflow", tags=["workflow"])


class PresentationSubmit(BaseModel):
    repository_url: str
    demo_url: Optional[str] = None
    presentation_url: Optional[str] = None
    presentation_notes: Optional[str] = None


class WorkflowStateResponse(BaseModel):
    registration_id: int
    event_id: int
    attended: bool
    screening_status: ScreeningStatus
    presentation_status: PresentationStatus
    qualification_status: QualificationStatus
    award_type: AwardType
    show_next_step: bool
    gate_state: GateState
    gate_message: str
    repository_url: Optional[str]
    demo_url: Optional[str]
    presentation_url: Optional[str]
    presentation_notes: Optional[str]
    presentation_submitted_at: Optional[datetime]
    test_attempt: Optional[AttemptSummary]


def _workflow_state(registration) -> WorkflowStateResponse:
    attempt = authoritative_attempt(registration.test_attempts)
    gate_state, gate_message = next_step_gate(
        registration.screening_status, attempt.passed if attempt else None
    )
    return WorkflowStateResponse(
        registration_id=registration.id,
        event_id=registration.event_id,
        attended=registration.attended,
        screening_status=registration.screening_status,
        presentation_status=registration.presentation_status,
        qualification_status=registration.qualification_status,
        award_type=registration.award_type,
        show_next_step=gate_state == GateState.OPEN,
        gate_state=gate_state,
        gate_message=gate_message,
        repository_url=registration.repository_url,
        demo_url=registration.demo_url,
        presentation_url=registration.presentation_url,
        presentation_notes=registration.presentation_notes,
        presentation_submitted_at=registration.presentation_submitted_at,
        test_attempt=AttemptSummary.model_validate(attempt) if attempt else None,
    )


@router.get("/{event_id}", response_model=WorkflowStateResponse)
async def get_workflow_state(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get the current user's progression through an event"""
    registration = get_user_registration(db, current_user.id, event_id)
    return _workflow_state(registration)


@router.post("/{event_id}/presentation", response_model=WorkflowStateResponse)
async def submit_project(
    event_id: int,
    submission: PresentationSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Submit (or resubmit) project links once the screening gate is open"""
    registration = get_user_registration(db, current_user.id, event_id)
    submit_presentation(
        db,
        registration,
        repository_url=submission.repository_url,
        demo_url=submission.demo_url,
        presentation_url=submission.presentation_url,
        presentation_notes=submission.presentation_notes,
    )
    return _workflow_state(registration)
