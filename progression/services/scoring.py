from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional
import logging
from progression.config import settings
from progression.models import (
    Registration, ScreeningStatus, ScreeningTest, TestAttempt, AttemptStatus,
    authoritative_attempt,
)
from progression.errors import (
    ConfigurationError, IllegalTransition, InvalidFieldValue, TransientIOError, ProgressionError,
)
from progression.services.screening_tests import validate_test_definition
from progression.services.workflow import complete_screening
from progression.services.notifications import notify

logger = logging.getLogger(__name__)


@dataclass
class AttemptMeta:
    started_at: datetime
    submitted_at: datetime
    tab_switches: int = 0
    status: AttemptStatus = AttemptStatus.SUBMITTED

    @property
    def time_taken_seconds(self) -> int:
        return max(0, round((self.submitted_at - self.started_at).total_seconds()))


def normalize_answers(answers: Optional[Mapping]) -> Dict[str, int]:
    """Answer maps are stored with string question ids, as JSON requires."""
    normalized = {}
    for question_id, option_index in (answers or {}).items():
        if option_index is None:
            continue
        if isinstance(option_index, bool):
            raise InvalidFieldValue(f"Invalid answer for question {question_id}")
        try:
            normalized[str(int(question_id))] = int(option_index)
        except (TypeError, ValueError):
            raise InvalidFieldValue(f"Invalid answer for question {question_id}")
    return normalized


def count_correct(questions: Iterable, answers: Mapping[str, int]) -> int:
    return sum(1 for q in questions if answers.get(str(q.id)) == q.correct_option)


def score_percentage(correct: int, total: int) -> int:
    """round(100 * correct / total), halves rounded up."""
    if total <= 0:
        raise ConfigurationError("Cannot grade a screening test without questions")
    return (200 * correct + total) // (2 * total)


def is_passing(score: int, passing_score: int) -> bool:
    return score >= passing_score


def sync_screening_result(db: Session, registration: Registration) -> Optional[TestAttempt]:
    """Copy the authoritative attempt's score and pass flag onto the registration."""
    attempts = db.query(TestAttempt).filter(TestAttempt.registration_id == registration.id).all()
    attempt = authoritative_attempt(attempts)
    registration.screening_score = attempt.score if attempt else None
    registration.screening_passed = attempt.passed if attempt else None
    return attempt


def grade(
    db: Session,
    screening_test: ScreeningTest,
    registration: Registration,
    answers: Optional[Mapping],
    meta: AttemptMeta,
) -> TestAttempt:
    """
    Grade one submitted answer set and persist it as a Test Attempt.

    The attempt, the screening status change and the registration's copy of the
    authoritative result are committed together; on any failure none of them
    is written.
    """
    validate_test_definition(screening_test)

    if registration.screening_status not in (ScreeningStatus.SENT, ScreeningStatus.COMPLETED):
        raise IllegalTransition(
            f"Screening test cannot be graded while screening is '{registration.screening_status.value}'"
        )

    if not settings.ALLOW_SCREENING_RETAKES:
        already_submitted = db.query(TestAttempt).filter(
            TestAttempt.registration_id == registration.id,
            TestAttempt.screening_test_id == screening_test.id
        ).first()
        if already_submitted:
            raise IllegalTransition("Screening test has already been submitted")

    question_ids = {str(q.id) for q in screening_test.questions}
    normalized = {qid: idx for qid, idx in normalize_answers(answers).items() if qid in question_ids}

    total_questions = screening_test.total_questions
    correct_count = count_correct(screening_test.questions, normalized)
    score = score_percentage(correct_count, total_questions)
    passed = is_passing(score, screening_test.passing_score)

    attempt = TestAttempt(
        registration_id=registration.id,
        screening_test_id=screening_test.id,
        started_at=meta.started_at,
        submitted_at=meta.submitted_at,
        answers=normalized,
        score=score,
        correct_count=correct_count,
        total_questions=total_questions,
        passed=passed,
        time_taken_seconds=meta.time_taken_seconds,
        tab_switches=max(0, meta.tab_switches),
        status=meta.status,
    )

    try:
        db.add(attempt)
        db.flush()
        complete_screening(registration)
        registration.screening_started_at = None
        sync_screening_result(db, registration)
        db.commit()
    except ProgressionError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to persist attempt for registration {registration.id}: {e}")
        raise TransientIOError("Failed to record the test submission")

    db.refresh(attempt)
    logger.info(
        f"Graded registration {registration.id}: {correct_count}/{total_questions} correct, "
        f"score={score}% passed={passed} status={attempt.status.value}"
    )
    notify("screening_completed", registration, attempt)
    return attempt


def backfill_screening_results(db: Session, event_id: Optional[int] = None) -> int:
    """Recompute screening_score/screening_passed for registrations graded before those columns existed."""
    query = db.query(Registration).filter(Registration.screening_status == ScreeningStatus.COMPLETED)
    if event_id is not None:
        query = query.filter(Registration.event_id == event_id)

    updated = 0
    for registration in query.all():
        if sync_screening_result(db, registration) is not None:
            updated += 1
    db.commit()
    logger.info(f"Backfilled screening results for {updated} registrations")
    return updated
