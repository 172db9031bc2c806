from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from progression.config import settings
from progression.database import get_db
from progression.models import (
    User, ScreeningStatus, PresentationStatus, QualificationStatus, AwardType,
)
from progression.auth.dependencies import require_admin
from progression.routes.registrations import (
    RegistrationResponse, build_registration_response, registration_response,
)
from progression.services.workflow import get_event, get_registration, mark_attendance, bulk_mark_attendance
from progression.services.registration_query import (
    RegistrationQuery, RegistrationQueryEngine, ScreeningResult, SortKey, SortOrder, apply_preset,
)
from progression.services.export import export_csv, export_filename

router = APIRouter(prefix="/admin", tags=["admin-registrations"])


class RegistrationPage(BaseModel):
    items: List[RegistrationResponse]
    total_count: int
    page: int
    page_size: int
    total_pages: int


class AttendanceUpdate(BaseModel):
    attended: bool


class BulkAttendance(BaseModel):
    registration_ids: List[int] = Field(min_length=1)
    attended: bool = True


class BatchResponse(BaseModel):
    success_count: int
    failure_count: int
    succeeded: List[int]
    failed: Dict[str, str]
    completed_with_warnings: bool


def registration_query_params(
    preset: Optional[str] = Query(None, alias="filter"),
    search: Optional[str] = None,
    attended: Optional[bool] = None,
    screening_status: Optional[ScreeningStatus] = None,
    presentation_status: Optional[PresentationStatus] = None,
    qualification_status: Optional[QualificationStatus] = None,
    award_type: Optional[AwardType] = None,
    min_admin_score: Optional[int] = Query(None, ge=0, le=100),
    has_admin_score: Optional[bool] = None,
    screening_result: Optional[ScreeningResult] = None,
    sort_by: SortKey = SortKey.REGISTERED_AT,
    sort_order: SortOrder = SortOrder.DESC,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.QUERY_DEFAULT_PAGE_SIZE, ge=1, le=settings.QUERY_MAX_PAGE_SIZE),
) -> RegistrationQuery:
    query = RegistrationQuery(
        search=search,
        attended=attended,
        screening_status=screening_status,
        presentation_status=presentation_status,
        qualification_status=qualification_status,
        award_type=award_type,
        min_admin_score=min_admin_score,
        has_admin_score=has_admin_score,
        screening_result=screening_result,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
    return apply_preset(query, preset)


@router.get("/events/{event_id}/registrations", response_model=RegistrationPage)
async def list_registrations(
    event_id: int,
    query: RegistrationQuery = Depends(registration_query_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Get filtered, sorted and paginated registrations of an event (Admin only)"""
    get_event(db, event_id)
    result = RegistrationQueryEngine(db).query(event_id, query)
    return RegistrationPage(
        items=[
            build_registration_response(row.registration, row.user, row.attempt, row.award_assigned_by_user)
            for row in result.items
        ],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/events/{event_id}/registrations/export")
async def export_registrations(
    event_id: int,
    query: RegistrationQuery = Depends(registration_query_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Download every registration matching the current filters as CSV (Admin only)"""
    event = get_event(db, event_id)
    content = export_csv(db, event_id, query)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(event.title)}"'},
    )


@router.patch("/registrations/{registration_id}/attendance", response_model=RegistrationResponse)
async def update_attendance(
    registration_id: int,
    update: AttendanceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Mark one registration as attended or not (Admin only)"""
    registration = get_registration(db, registration_id)
    mark_attendance(db, registration, update.attended)
    return registration_response(db, registration)


@router.post("/events/{event_id}/attendance/bulk", response_model=BatchResponse)
async def update_attendance_bulk(
    event_id: int,
    update: BulkAttendance,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Mark many registrations at once; failures are reported per registration (Admin only)"""
    get_event(db, event_id)
    result = bulk_mark_attendance(db, event_id, update.registration_ids, update.attended)
    return result.as_dict()
