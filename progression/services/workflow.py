"""
Workflow transitions for a registration's progression fields.

Each field is an independent state machine (screening, presentation,
qualification, award); the guards below encode the order between them.
Every operation validates completely before it mutates anything, so a rejected
operation never leaves a partial change behind. No operation cascades into
another field: clearing an award, for example, is always an explicit call.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple
import enum
import logging
from progression.models import (
    Registration, ScreeningStatus, PresentationStatus, QualificationStatus,
    AwardType, ScreeningTest, User, Event, authoritative_attempt,
)
from progression.errors import (
    IllegalTransition, InvalidFieldValue, NotFound, TransientIOError,
    ProgressionError, BatchResult,
)
from progression.services.notifications import notify
from progression.services.screening_tests import validate_test_definition

logger = logging.getLogger(__name__)


SCREENING_TRANSITIONS = {
    ScreeningStatus.PENDING: {ScreeningStatus.SENT, ScreeningStatus.SKIPPED},
    ScreeningStatus.SENT: {ScreeningStatus.COMPLETED, ScreeningStatus.SKIPPED},
    ScreeningStatus.COMPLETED: set(),
    ScreeningStatus.SKIPPED: set(),
}

PRESENTATION_TRANSITIONS = {
    PresentationStatus.PENDING: {PresentationStatus.SUBMITTED},
    # resubmitting only replaces the links
    PresentationStatus.SUBMITTED: {PresentationStatus.SUBMITTED, PresentationStatus.REVIEWED},
    PresentationStatus.REVIEWED: set(),
}

QUALIFICATION_TRANSITIONS = {
    QualificationStatus.PENDING: {QualificationStatus.QUALIFIED, QualificationStatus.REJECTED},
    QualificationStatus.QUALIFIED: {QualificationStatus.PENDING},
    QualificationStatus.REJECTED: {QualificationStatus.PENDING},
}

AWARD_TRANSITIONS = {
    AwardType.NONE: {AwardType.WINNER, AwardType.RUNNER_UP},
    AwardType.WINNER: {AwardType.NONE},
    AwardType.RUNNER_UP: {AwardType.NONE},
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_status(enum_cls, value, field_name: str):
    """Accept an enum member or its string value; anything else is rejected."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidFieldValue(f"Invalid {field_name} '{value}'. Must be one of: {allowed}")


def _check_transition(table, field_name: str, current, target) -> None:
    if target not in table[current]:
        raise IllegalTransition(
            f"Cannot change {field_name} from '{current.value}' to '{target.value}'"
        )


def get_event(db: Session, event_id: int) -> Event:
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise NotFound("Event not found")
    return event


def get_registration(db: Session, registration_id: int) -> Registration:
    registration = db.query(Registration).filter(Registration.id == registration_id).first()
    if not registration:
        raise NotFound("Registration not found")
    return registration


def get_user_registration(db: Session, user_id: int, event_id: int) -> Registration:
    registration = db.query(Registration).filter(
        Registration.user_id == user_id,
        Registration.event_id == event_id
    ).first()
    if not registration:
        raise NotFound("Registration not found")
    return registration


def user_registrations(db: Session, user_id: int) -> List[Registration]:
    """Every registration of one user, newest first."""
    return db.query(Registration).filter(
        Registration.user_id == user_id
    ).order_by(Registration.registered_at.desc(), Registration.id.desc()).all()


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to persist {what}: {e}")
        raise TransientIOError(f"Failed to persist {what}")


# ========== SCREENING GATE ==========

class GateState(str, enum.Enum):
    OPEN = "open"
    WAITING = "waiting"
    BLOCKED = "blocked"


GATE_MESSAGES = {
    GateState.OPEN: "You can now submit your project.",
    GateState.WAITING: "Project submission opens once your screening test has been completed and passed.",
    GateState.BLOCKED: "You did not reach the passing score of the screening test, so project submission is closed.",
}


def should_show_next_step(screening_status, passed: Optional[bool]) -> bool:
    screening_status = coerce_status(ScreeningStatus, screening_status, "screening_status")
    if screening_status == ScreeningStatus.SKIPPED:
        return True
    return screening_status == ScreeningStatus.COMPLETED and passed is True


def next_step_gate(screening_status, passed: Optional[bool]) -> Tuple[GateState, str]:
    screening_status = coerce_status(ScreeningStatus, screening_status, "screening_status")
    if should_show_next_step(screening_status, passed):
        state = GateState.OPEN
    elif screening_status == ScreeningStatus.COMPLETED:
        state = GateState.BLOCKED
    else:
        state = GateState.WAITING
    return state, GATE_MESSAGES[state]


def registration_gate(registration: Registration) -> Tuple[GateState, str]:
    attempt = authoritative_attempt(registration.test_attempts)
    passed = attempt.passed if attempt else None
    return next_step_gate(registration.screening_status, passed)


# ========== REGISTRATION & ATTENDANCE ==========

def register_participant(db: Session, user: User, event: Event, amount_paid=None) -> Registration:
    """Create the registration row at sign-up time; every status starts pending."""
    existing = db.query(Registration).filter(
        Registration.user_id == user.id,
        Registration.event_id == event.id
    ).first()
    if existing:
        raise IllegalTransition("Already registered for this event")

    registration = Registration(
        user_id=user.id,
        event_id=event.id,
        amount_paid=amount_paid,
        attended=False,
        screening_status=ScreeningStatus.PENDING,
        presentation_status=PresentationStatus.PENDING,
        qualification_status=QualificationStatus.PENDING,
        award_type=AwardType.NONE,
    )
    db.add(registration)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise IllegalTransition("Already registered for this event")
    db.refresh(registration)

    logger.info(f"User {user.id} registered for event {event.id} (registration {registration.id})")
    notify("registration_confirmed", registration)
    return registration


def mark_attendance(db: Session, registration: Registration, attended: bool, commit: bool = True) -> Registration:
    registration.attended = bool(attended)
    if commit:
        _commit(db, "attendance")
    return registration


# ========== SCREENING ==========

def send_screening_test(
    db: Session,
    registration: Registration,
    screening_test: ScreeningTest,
    commit: bool = True
) -> Registration:
    if screening_test.event_id != registration.event_id:
        raise InvalidFieldValue("Screening test belongs to a different event")
    if not registration.attended:
        raise IllegalTransition("Screening tests can only be sent to attendees marked as attended")
    _check_transition(SCREENING_TRANSITIONS, "screening_status", registration.screening_status, ScreeningStatus.SENT)

    registration.screening_status = ScreeningStatus.SENT
    registration.screening_test_id = screening_test.id
    if commit:
        _commit(db, "screening status")
        notify("screening_test_sent", registration, screening_test)
    return registration


def skip_screening(db: Session, registration: Registration, commit: bool = True) -> Registration:
    _check_transition(SCREENING_TRANSITIONS, "screening_status", registration.screening_status, ScreeningStatus.SKIPPED)
    registration.screening_status = ScreeningStatus.SKIPPED
    if commit:
        _commit(db, "screening status")
    return registration


def complete_screening(registration: Registration) -> bool:
    """
    Move screening to completed on behalf of the scoring service.

    Returns False when it was already completed; grading a later attempt does
    not touch the status again. The caller owns the transaction.
    """
    if registration.screening_status == ScreeningStatus.COMPLETED:
        return False
    _check_transition(
        SCREENING_TRANSITIONS, "screening_status", registration.screening_status, ScreeningStatus.COMPLETED
    )
    registration.screening_status = ScreeningStatus.COMPLETED
    registration.screening_submitted_at = _now()
    return True


# ========== PRESENTATION ==========

def submit_presentation(
    db: Session,
    registration: Registration,
    repository_url: str,
    demo_url: Optional[str] = None,
    presentation_url: Optional[str] = None,
    presentation_notes: Optional[str] = None,
) -> Registration:
    state, message = registration_gate(registration)
    if state != GateState.OPEN:
        raise IllegalTransition(message)
    if not repository_url or not repository_url.strip():
        raise InvalidFieldValue("A repository link is required")
    _check_transition(
        PRESENTATION_TRANSITIONS, "presentation_status",
        registration.presentation_status, PresentationStatus.SUBMITTED
    )

    registration.repository_url = repository_url.strip()
    registration.demo_url = demo_url or None
    registration.presentation_url = presentation_url or None
    registration.presentation_notes = presentation_notes or None
    registration.presentation_status = PresentationStatus.SUBMITTED
    registration.presentation_submitted_at = _now()
    _commit(db, "presentation")

    logger.info(f"Registration {registration.id} submitted its project")
    return registration


def mark_presentation_reviewed(db: Session, registration: Registration) -> Registration:
    _check_transition(
        PRESENTATION_TRANSITIONS, "presentation_status",
        registration.presentation_status, PresentationStatus.REVIEWED
    )
    registration.presentation_status = PresentationStatus.REVIEWED
    _commit(db, "presentation status")
    return registration


# ========== QUALIFICATION & AWARDS ==========

def decide_qualification(
    db: Session,
    registration: Registration,
    qualification_status,
    admin: User,
    remarks: Optional[str] = None,
) -> Registration:
    target = coerce_status(QualificationStatus, qualification_status, "qualification_status")

    if registration.presentation_status not in (PresentationStatus.SUBMITTED, PresentationStatus.REVIEWED):
        raise IllegalTransition("Qualification can only be decided after the project has been submitted")
    if (
        registration.qualification_status == QualificationStatus.QUALIFIED
        and target != QualificationStatus.QUALIFIED
        and registration.award_type != AwardType.NONE
    ):
        raise IllegalTransition("Remove the assigned award before changing the qualification decision")
    _check_transition(
        QUALIFICATION_TRANSITIONS, "qualification_status", registration.qualification_status, target
    )

    registration.qualification_status = target
    registration.qualification_remarks = remarks
    if target == QualificationStatus.PENDING:
        registration.qualified_at = None
        registration.qualified_by = None
    else:
        registration.qualified_at = _now()
        registration.qualified_by = admin.id
    _commit(db, "qualification decision")

    logger.info(f"Admin {admin.id} set qualification of registration {registration.id} to {target.value}")
    return registration


def assign_award(db: Session, registration: Registration, award_type, admin: User) -> Registration:
    target = coerce_status(AwardType, award_type, "award_type")
    if target == AwardType.NONE:
        raise InvalidFieldValue("Use award removal to clear an award")
    if registration.qualification_status != QualificationStatus.QUALIFIED:
        raise IllegalTransition("Awards can only be assigned to qualified participants")
    _check_transition(AWARD_TRANSITIONS, "award_type", registration.award_type, target)

    if target == AwardType.WINNER:
        existing_winner = db.query(Registration).filter(
            Registration.event_id == registration.event_id,
            Registration.award_type == AwardType.WINNER,
            Registration.id != registration.id
        ).first()
        if existing_winner:
            raise IllegalTransition(f"Event already has a winner (registration {existing_winner.id})")

    registration.award_type = target
    registration.award_assigned_at = _now()
    registration.award_assigned_by = admin.id
    _commit(db, "award")

    logger.info(f"Admin {admin.id} assigned {target.value} to registration {registration.id}")
    return registration


def remove_award(db: Session, registration: Registration) -> Registration:
    _check_transition(AWARD_TRANSITIONS, "award_type", registration.award_type, AwardType.NONE)
    registration.award_type = AwardType.NONE
    registration.award_assigned_at = None
    registration.award_assigned_by = None
    _commit(db, "award")
    return registration


def event_awards(db: Session, event_id: int) -> Tuple[List[Registration], List[Registration]]:
    """Winners and runners-up of an event, each in the order the awards were assigned."""
    awarded = db.query(Registration).filter(
        Registration.event_id == event_id,
        Registration.award_type.in_([AwardType.WINNER, AwardType.RUNNER_UP])
    ).order_by(Registration.award_assigned_at.asc(), Registration.id.asc()).all()
    winners = [r for r in awarded if r.award_type == AwardType.WINNER]
    runners_up = [r for r in awarded if r.award_type == AwardType.RUNNER_UP]
    return winners, runners_up


# ========== ADMIN REVIEW ==========

def update_admin_notes(db: Session, registration: Registration, notes: Optional[str]) -> Registration:
    registration.admin_notes = notes.strip() if notes and notes.strip() else None
    _commit(db, "admin notes")
    return registration


def update_admin_score(db: Session, registration: Registration, score: Optional[int]) -> Registration:
    if score is not None and not 0 <= score <= 100:
        raise InvalidFieldValue("Score must be between 0 and 100")
    registration.admin_score = score
    _commit(db, "admin score")
    return registration


# ========== BULK OPERATIONS ==========

def _run_batch(
    db: Session,
    event_id: int,
    registration_ids: Iterable[int],
    operation: Callable[[Registration], None],
    label: str,
) -> BatchResult:
    """
    Apply one operation per registration and tally the outcome of each.

    A rejected item is recorded and skipped; items that succeeded are kept.
    """
    result = BatchResult()
    for registration_id in dict.fromkeys(registration_ids):
        registration = db.query(Registration).filter(
            Registration.id == registration_id,
            Registration.event_id == event_id
        ).first()
        try:
            if registration is None:
                raise NotFound("Registration not found for this event")
            operation(registration)
        except ProgressionError as e:
            result.failed[registration_id] = e.message
        else:
            result.succeeded.append(registration_id)

    _commit(db, label)
    logger.info(
        f"{label} for event {event_id}: {result.success_count} succeeded, {result.failure_count} failed"
    )
    return result


def bulk_mark_attendance(db: Session, event_id: int, registration_ids: Iterable[int], attended: bool) -> BatchResult:
    return _run_batch(
        db, event_id, registration_ids,
        lambda registration: mark_attendance(db, registration, attended, commit=False),
        "bulk attendance",
    )


def bulk_send_screening_test(
    db: Session,
    event_id: int,
    registration_ids: Iterable[int],
    screening_test: ScreeningTest,
) -> BatchResult:
    """Send to each registration; participants are notified only once the batch is committed."""
    validate_test_definition(screening_test)
    sent = []

    def send(registration: Registration) -> None:
        send_screening_test(db, registration, screening_test, commit=False)
        sent.append(registration)

    result = _run_batch(db, event_id, registration_ids, send, "send screening test")
    for registration in sent:
        notify("screening_test_sent", registration, screening_test)
    return result


def bulk_skip_screening(db: Session, event_id: int, registration_ids: Iterable[int]) -> BatchResult:
    return _run_batch(
        db, event_id, registration_ids,
        lambda registration: skip_screening(db, registration, commit=False),
        "skip screening",
    )
