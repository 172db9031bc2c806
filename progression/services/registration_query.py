"""
Filtered, sorted and paginated views over an event's registrations.

Most filters and sort keys are columns of the registration (or its user) and
run entirely in the database. Screening pass/fail and the test score live on
test attempts, so when they are requested the engine takes the derived path:
it loads every candidate that survives the native filters, joins the
authoritative attempt of each, filters and sorts in memory, counts, and only
then cuts out the requested page.

With ``use_denormalized`` the scoring service's copies of the authoritative
result on the registration row (``screening_score``/``screening_passed``) are
used instead, which keeps every query on the native path.
"""
from sqlalchemy.orm import Session
from sqlalchemy import case, func, or_
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional
import enum
import logging
from progression.config import settings
from progression.models import (
    Registration, User, TestAttempt, ScreeningStatus, PresentationStatus,
    QualificationStatus, AwardType, authoritative_attempt,
)
from progression.errors import InvalidFieldValue

logger = logging.getLogger(__name__)


class ScreeningResult(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"


class SortKey(str, enum.Enum):
    NAME = "name"
    EMAIL = "email"
    REGISTERED_AT = "registered_at"
    ATTENDED = "attended"
    ADMIN_SCORE = "admin_score"
    TEST_SCORE = "test_score"


class SortOrder(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class RegistrationQuery:
    search: Optional[str] = None
    attended: Optional[bool] = None
    screening_status: Optional[ScreeningStatus] = None
    presentation_status: Optional[PresentationStatus] = None
    qualification_status: Optional[QualificationStatus] = None
    award_type: Optional[AwardType] = None
    min_admin_score: Optional[int] = None
    has_admin_score: Optional[bool] = None
    screening_result: Optional[ScreeningResult] = None
    sort_by: SortKey = SortKey.REGISTERED_AT
    sort_order: SortOrder = SortOrder.DESC
    page: int = 1
    page_size: int = 20

    @property
    def uses_derived_fields(self) -> bool:
        return self.screening_result is not None or self.sort_by == SortKey.TEST_SCORE


# Named filters offered by the admin registrations table
PRESETS = {
    "all": {},
    "attended": {"attended": True},
    "not_attended": {"attended": False},
    "screening_pending": {"screening_status": ScreeningStatus.PENDING},
    "screening_sent": {"screening_status": ScreeningStatus.SENT},
    "screening_completed": {"screening_status": ScreeningStatus.COMPLETED},
    "screening_skipped": {"screening_status": ScreeningStatus.SKIPPED},
    "screening_passed": {"screening_result": ScreeningResult.PASSED},
    "screening_failed": {"screening_result": ScreeningResult.FAILED},
    "presentation_submitted": {"presentation_status": PresentationStatus.SUBMITTED},
    "presentation_reviewed": {"presentation_status": PresentationStatus.REVIEWED},
    "qualified": {"qualification_status": QualificationStatus.QUALIFIED},
    "rejected": {"qualification_status": QualificationStatus.REJECTED},
    "qualification_pending": {"qualification_status": QualificationStatus.PENDING},
    "winners": {"award_type": AwardType.WINNER},
    "runners_up": {"award_type": AwardType.RUNNER_UP},
    "high_score": {"min_admin_score": None},  # threshold filled from settings
    "no_admin_score": {"has_admin_score": False},
}


def apply_preset(query: RegistrationQuery, name: Optional[str]) -> RegistrationQuery:
    if not name:
        return query
    if name not in PRESETS:
        raise InvalidFieldValue(f"Unknown filter '{name}'")
    changes = dict(PRESETS[name])
    if name == "high_score":
        changes["min_admin_score"] = settings.HIGH_ADMIN_SCORE_THRESHOLD
    return replace(query, **changes)


@dataclass
class RegistrationRow:
    registration: Registration
    user: User
    attempt: Optional[TestAttempt] = None
    award_assigned_by_user: Optional[User] = None

    @property
    def test_score(self) -> Optional[int]:
        return self.attempt.score if self.attempt else None

    @property
    def screening_passed(self) -> Optional[bool]:
        return self.attempt.passed if self.attempt else None


@dataclass
class QueryPage:
    items: List[RegistrationRow] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 20

    @property
    def total_pages(self) -> int:
        return (self.total_count + self.page_size - 1) // self.page_size if self.page_size else 0


SORT_COLUMNS = {
    SortKey.NAME: func.lower(User.full_name),
    SortKey.EMAIL: func.lower(User.email),
    SortKey.REGISTERED_AT: Registration.registered_at,
    SortKey.ATTENDED: Registration.attended,
    SortKey.ADMIN_SCORE: Registration.admin_score,
    SortKey.TEST_SCORE: Registration.screening_score,
}

# Registrations without a value sort last in either direction
NULLS_LAST_KEYS = {SortKey.ADMIN_SCORE, SortKey.TEST_SCORE}


class RegistrationQueryEngine:
    def __init__(self, db: Session, use_denormalized: Optional[bool] = None):
        self.db = db
        if use_denormalized is None:
            use_denormalized = settings.QUERY_USE_DENORMALIZED_SCREENING
        self.use_denormalized = use_denormalized

    def query(self, event_id: int, query: RegistrationQuery) -> QueryPage:
        self._check_window(query)
        offset = (query.page - 1) * query.page_size

        if self._needs_derived_path(query):
            rows = self._derived_rows(event_id, query)
            total_count = len(rows)
            rows = rows[offset:offset + query.page_size]
        else:
            rows, total_count = self._native_page(event_id, query, offset)

        self._attach_award_admins(rows)
        return QueryPage(items=rows, total_count=total_count, page=query.page, page_size=query.page_size)

    def export(self, event_id: int, query: RegistrationQuery) -> List[RegistrationRow]:
        """Every matching row, filtered and sorted like query() but never paginated."""
        if self._needs_derived_path(query):
            rows = self._derived_rows(event_id, query)
        else:
            pairs = self._base_query(event_id, query).order_by(*self._order_by(query)).all()
            rows = self._join_attempts(pairs)
        self._attach_award_admins(rows)
        return rows

    # ---------- paths ----------

    def _needs_derived_path(self, query: RegistrationQuery) -> bool:
        return query.uses_derived_fields and not self.use_denormalized

    def _check_window(self, query: RegistrationQuery) -> None:
        if query.page < 1:
            raise InvalidFieldValue("Page must be 1 or greater")
        if not 1 <= query.page_size <= settings.QUERY_MAX_PAGE_SIZE:
            raise InvalidFieldValue(f"Page size must be between 1 and {settings.QUERY_MAX_PAGE_SIZE}")

    def _native_page(self, event_id: int, query: RegistrationQuery, offset: int):
        base = self._base_query(event_id, query)
        results = (
            base.add_columns(func.count().over().label("total_count"))
            .order_by(*self._order_by(query))
            .offset(offset)
            .limit(query.page_size)
            .all()
        )
        if results:
            total_count = results[0][2]
        elif offset > 0:
            # Past the last page: the window count came back with no rows
            total_count = base.count()
        else:
            total_count = 0
        rows = self._join_attempts([(registration, user) for registration, user, _ in results])
        return rows, total_count

    def _derived_rows(self, event_id: int, query: RegistrationQuery) -> List[RegistrationRow]:
        base = self._base_query(event_id, query)
        if query.sort_by == SortKey.TEST_SCORE:
            pairs = base.order_by(Registration.id.asc()).all()
        else:
            pairs = base.order_by(*self._order_by(query)).all()
        rows = self._join_attempts(pairs)

        if query.screening_result == ScreeningResult.PASSED:
            rows = [row for row in rows if row.attempt is not None and row.attempt.passed]
        elif query.screening_result == ScreeningResult.FAILED:
            rows = [row for row in rows if row.attempt is not None and not row.attempt.passed]

        if query.sort_by == SortKey.TEST_SCORE:
            graded = [row for row in rows if row.attempt is not None]
            ungraded = [row for row in rows if row.attempt is None]
            graded.sort(key=lambda row: row.attempt.score, reverse=query.sort_order == SortOrder.DESC)
            rows = graded + ungraded

        logger.debug(f"Derived registration query for event {event_id}: {len(pairs)} candidates, {len(rows)} matched")
        return rows

    # ---------- storage layer ----------

    def _base_query(self, event_id: int, query: RegistrationQuery):
        q = self.db.query(Registration, User).join(User, Registration.user_id == User.id).filter(
            Registration.event_id == event_id
        )

        if query.search and query.search.strip():
            term = f"%{query.search.strip().lower()}%"
            q = q.filter(or_(func.lower(User.full_name).like(term), func.lower(User.email).like(term)))
        if query.attended is not None:
            q = q.filter(Registration.attended == query.attended)
        if query.screening_status is not None:
            q = q.filter(Registration.screening_status == query.screening_status)
        if query.presentation_status is not None:
            q = q.filter(Registration.presentation_status == query.presentation_status)
        if query.qualification_status is not None:
            q = q.filter(Registration.qualification_status == query.qualification_status)
        if query.award_type is not None:
            q = q.filter(Registration.award_type == query.award_type)
        if query.min_admin_score is not None:
            q = q.filter(Registration.admin_score >= query.min_admin_score)
        if query.has_admin_score is True:
            q = q.filter(Registration.admin_score.isnot(None))
        elif query.has_admin_score is False:
            q = q.filter(Registration.admin_score.is_(None))

        if self.use_denormalized and query.screening_result is not None:
            q = q.filter(Registration.screening_passed == (query.screening_result == ScreeningResult.PASSED))
        return q

    def _order_by(self, query: RegistrationQuery) -> list:
        column = SORT_COLUMNS[query.sort_by]
        clauses = []
        if query.sort_by in NULLS_LAST_KEYS:
            clauses.append(case((column.is_(None), 1), else_=0))
        clauses.append(column.asc() if query.sort_order == SortOrder.ASC else column.desc())
        clauses.append(Registration.id.asc())
        return clauses

    def _join_attempts(self, pairs) -> List[RegistrationRow]:
        attempts = self._authoritative_attempts([registration.id for registration, _ in pairs])
        return [
            RegistrationRow(registration=registration, user=user, attempt=attempts.get(registration.id))
            for registration, user in pairs
        ]

    def _authoritative_attempts(self, registration_ids: List[int]) -> Dict[int, TestAttempt]:
        if not registration_ids:
            return {}
        by_registration: Dict[int, List[TestAttempt]] = {}
        attempts = self.db.query(TestAttempt).filter(TestAttempt.registration_id.in_(registration_ids)).all()
        for attempt in attempts:
            by_registration.setdefault(attempt.registration_id, []).append(attempt)
        return {
            registration_id: authoritative_attempt(group)
            for registration_id, group in by_registration.items()
        }

    def _attach_award_admins(self, rows: List[RegistrationRow]) -> None:
        admin_ids = {row.registration.award_assigned_by for row in rows if row.registration.award_assigned_by}
        if not admin_ids:
            return
        admins = {user.id: user for user in self.db.query(User).filter(User.id.in_(admin_ids)).all()}
        for row in rows:
            row.award_assigned_by_user = admins.get(row.registration.award_assigned_by)
