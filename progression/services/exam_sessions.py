"""
Grading boundary for timed screening exams.

The server owns the exam clock: the first start of a session records its
start time on the registration, and every token issued for that session
(including on a resumed start) signs the same start time and deadline. A
submission is timed from the stored start, never from anything the client
reports.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional, Tuple
import logging
import math
from progression.config import settings
from progression.models import (
    User, Registration, ScreeningStatus, ScreeningTest, TestAttempt, AttemptStatus,
)
from progression.errors import IllegalTransition, InvalidFieldValue, NotFound, TransientIOError
from progression.auth.jwt import create_exam_token, verify_exam_token
from progression.services.workflow import get_registration, get_user_registration, coerce_status
from progression.services.screening_tests import get_test, validate_test_definition, exam_paper
from progression.services.scoring import AttemptMeta, grade

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def assigned_test(db: Session, registration: Registration) -> ScreeningTest:
    if registration.screening_test_id is None:
        raise NotFound("No screening test has been sent for this registration")
    return get_test(db, registration.screening_test_id)


def _can_start(db: Session, registration: Registration, screening_test: ScreeningTest) -> None:
    startable = {ScreeningStatus.SENT}
    if settings.ALLOW_SCREENING_RETAKES:
        startable.add(ScreeningStatus.COMPLETED)
    if registration.screening_status not in startable:
        raise IllegalTransition("Test not available or already completed")

    if not settings.ALLOW_SCREENING_RETAKES:
        existing = db.query(TestAttempt).filter(
            TestAttempt.registration_id == registration.id,
            TestAttempt.screening_test_id == screening_test.id
        ).first()
        if existing:
            raise IllegalTransition("Test already completed")


def session_deadline(started_at: datetime, screening_test: ScreeningTest) -> datetime:
    return started_at + timedelta(minutes=screening_test.timer_minutes)


def _open_session(db: Session, registration: Registration, now: datetime) -> bool:
    """Record the session start unless one is already open; True when this call opened it."""
    try:
        opened = db.query(Registration).filter(
            Registration.id == registration.id,
            Registration.screening_started_at.is_(None)
        ).update({Registration.screening_started_at: now}, synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to open exam session for registration {registration.id}: {e}")
        raise TransientIOError("Failed to start the screening test")
    db.refresh(registration)
    return opened == 1


def start_exam_session(db: Session, user: User, event_id: int, now: Optional[datetime] = None) -> dict:
    """
    Open a timed session, or resume the one already open, and return the exam
    paper with its signed token.

    A resumed session keeps its original start and deadline; once its
    submission window has closed it cannot be resumed.
    """
    now = now or _now()
    registration = get_user_registration(db, user.id, event_id)
    screening_test = assigned_test(db, registration)
    validate_test_definition(screening_test)
    _can_start(db, registration, screening_test)

    resumed = registration.screening_started_at is not None
    if not resumed:
        test_deadline = _as_utc(screening_test.deadline)
        if test_deadline is not None and now > test_deadline:
            raise IllegalTransition("The deadline for this screening test has passed")
        # a concurrent start may have opened the session first
        resumed = not _open_session(db, registration, now)

    started_at = _as_utc(registration.screening_started_at)
    deadline = session_deadline(started_at, screening_test)
    if now > deadline + timedelta(seconds=settings.EXAM_SUBMISSION_GRACE_SECONDS):
        raise IllegalTransition("Exam session has expired; the submission window is closed")

    token = create_exam_token(user.id, registration.id, screening_test.id, started_at, deadline)
    remaining_seconds = max(0, math.ceil((deadline - now).total_seconds()))

    logger.info(
        f"Exam session {'resumed' if resumed else 'started'}: registration={registration.id} "
        f"test={screening_test.id} deadline={deadline.isoformat()} remaining={remaining_seconds}s"
    )
    return {
        "token": token,
        "registration_id": registration.id,
        "resumed": resumed,
        "started_at": started_at,
        "deadline": deadline,
        "remaining_seconds": remaining_seconds,
        "paper": exam_paper(screening_test),
    }


def submit_exam(
    db: Session,
    user: User,
    token: str,
    answers: Optional[Mapping],
    tab_switches: int,
    status,
    now: Optional[datetime] = None,
) -> Tuple[TestAttempt, ScreeningTest]:
    """
    Grade a submission against the session recorded for its registration.

    The token must belong to the open session. A submission arriving after
    the session deadline (plus clock tolerance) is recorded as a timeout
    whatever the client claims.
    """
    now = now or _now()
    claims = verify_exam_token(token)
    if claims.user_id != user.id:
        raise InvalidFieldValue("Exam session belongs to another user")

    registration = get_registration(db, claims.registration_id)
    if registration.user_id != user.id:
        raise InvalidFieldValue("Exam session belongs to another user")
    screening_test = get_test(db, claims.screening_test_id)
    attempt_status = coerce_status(AttemptStatus, status, "status")

    started_at = _as_utc(registration.screening_started_at)
    if started_at is None:
        raise IllegalTransition("Screening test has already been submitted")
    if abs((claims.started_at - started_at).total_seconds()) >= 1:
        raise InvalidFieldValue("Exam session token does not match the open session")

    deadline = session_deadline(started_at, screening_test)
    if now > deadline + timedelta(seconds=settings.EXAM_CLOCK_TOLERANCE_SECONDS):
        if attempt_status != AttemptStatus.TIMEOUT:
            logger.info(
                f"Late submission for registration {registration.id}: "
                f"client status {attempt_status.value} recorded as timeout"
            )
        attempt_status = AttemptStatus.TIMEOUT

    meta = AttemptMeta(
        started_at=started_at,
        submitted_at=now,
        tab_switches=max(0, int(tab_switches or 0)),
        status=attempt_status,
    )
    attempt = grade(db, screening_test, registration, answers, meta)
    return attempt, screening_test
