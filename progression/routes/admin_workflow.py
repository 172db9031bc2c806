from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import List, Optional
from progression.database import get_db
from progression.models import User, AwardType, QualificationStatus
from progression.auth.dependencies import require_admin
from progression.errors import InvalidFieldValue
from progression.routes.registrations import RegistrationResponse, registration_response
from progression.routes.admin_registrations import BatchResponse
from progression.services.workflow import (
    get_event, get_registration, bulk_send_screening_test, bulk_skip_screening,
    mark_presentation_reviewed, decide_qualification, assign_award, remove_award,
    update_admin_notes, update_admin_score,
)
from progression.services.screening_tests import get_active_test, get_test

router = APIRouter(prefix="/admin", tags=["admin-workflow"])


class SendScreeningTest(BaseModel):
    registration_ids: List[int] = Field(min_length=1)
    screening_test_id: Optional[int] = None


class SkipScreening(BaseModel):
    registration_ids: List[int] = Field(min_length=1)


class QualificationDecision(BaseModel):
    status: QualificationStatus
    remarks: Optional[str] = None


class AwardAssignment(BaseModel):
    award_type: AwardType


class NotesUpdate(BaseModel):
    admin_notes: Optional[str] = None


class ScoreUpdate(BaseModel):
    admin_score: Optional[int] = None


@router.post("/events/{event_id}/screening/send", response_model=BatchResponse)
async def send_screening(
    event_id: int,
    request: SendScreeningTest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Send the screening test to the selected attended registrations (Admin only)"""
    get_event(db, event_id)
    if request.screening_test_id is not None:
        screening_test = get_test(db, request.screening_test_id)
        if screening_test.event_id != event_id:
            raise InvalidFieldValue("Screening test belongs to a different event")
    else:
        screening_test = get_active_test(db, event_id)
    result = bulk_send_screening_test(db, event_id, request.registration_ids, screening_test)
    return result.as_dict()


@router.post("/events/{event_id}/screening/skip", response_model=BatchResponse)
async def skip_screening(
    event_id: int,
    request: SkipScreening,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Let the selected registrations skip the screening test (Admin only)"""
    get_event(db, event_id)
    result = bulk_skip_screening(db, event_id, request.registration_ids)
    return result.as_dict()


@router.post("/registrations/{registration_id}/presentation/review", response_model=RegistrationResponse)
async def review_presentation(
    registration_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Mark a submitted project as reviewed (Admin only)"""
    registration = get_registration(db, registration_id)
    mark_presentation_reviewed(db, registration)
    return registration_response(db, registration)


@router.post("/registrations/{registration_id}/qualification", response_model=RegistrationResponse)
async def set_qualification(
    registration_id: int,
    decision: QualificationDecision,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Qualify, reject or revert a registration to pending (Admin only)"""
    registration = get_registration(db, registration_id)
    decide_qualification(db, registration, decision.status, current_user, remarks=decision.remarks)
    return registration_response(db, registration)


@router.post("/registrations/{registration_id}/award", response_model=RegistrationResponse)
async def set_award(
    registration_id: int,
    assignment: AwardAssignment,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Assign winner or runner-up to a qualified registration (Admin only)"""
    registration = get_registration(db, registration_id)
    assign_award(db, registration, assignment.award_type, current_user)
    return registration_response(db, registration)


@router.delete("/registrations/{registration_id}/award", response_model=RegistrationResponse)
async def clear_award(
    registration_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Remove the award of a registration (Admin only)"""
    registration = get_registration(db, registration_id)
    remove_award(db, registration)
    return registration_response(db, registration)


@router.patch("/registrations/{registration_id}/notes", response_model=RegistrationResponse)
async def set_admin_notes(
    registration_id: int,
    update: NotesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Update the private admin notes of a registration (Admin only)"""
    registration = get_registration(db, registration_id)
    update_admin_notes(db, registration, update.admin_notes)
    return registration_response(db, registration)


@router.patch("/registrations/{registration_id}/score", response_model=RegistrationResponse)
async def set_admin_score(
    registration_id: int,
    update: ScoreUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Set or clear the admin score (0-100) of a registration (Admin only)"""
    registration = get_registration(db, registration_id)
    update_admin_score(db, registration, update.admin_score)
    return registration_response(db, registration)
