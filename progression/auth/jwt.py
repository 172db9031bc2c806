from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Optional
import logging
import jwt
from progression.config import settings
from progression.errors import IllegalTransition, InvalidFieldValue

logger = logging.getLogger(__name__)

EXAM_TOKEN_TYPE = "exam_session"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Decode a bearer token; None when the signature or expiry is invalid."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info(f"Rejected access token: {e}")
        return None
    if payload.get("typ") == EXAM_TOKEN_TYPE:
        return None
    return payload


@dataclass
class ExamTokenClaims:
    user_id: int
    registration_id: int
    screening_test_id: int
    started_at: datetime
    deadline: datetime


def create_exam_token(
    user_id: int,
    registration_id: int,
    screening_test_id: int,
    started_at: datetime,
    deadline: datetime,
) -> str:
    """
    Sign the authoritative start time and deadline of one exam session.

    The token stays valid for EXAM_SUBMISSION_GRACE_SECONDS after the deadline
    so a submission fired by the client's own countdown still reaches grading.
    """
    payload = {
        "typ": EXAM_TOKEN_TYPE,
        "sub": str(user_id),
        "reg": registration_id,
        "test": screening_test_id,
        "started_at": started_at.timestamp(),
        "deadline": deadline.timestamp(),
        "exp": deadline + timedelta(seconds=settings.EXAM_SUBMISSION_GRACE_SECONDS),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_exam_token(token: str) -> ExamTokenClaims:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise IllegalTransition("Exam session has expired; the submission window is closed")
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected exam token: {e}")
        raise InvalidFieldValue("Invalid exam session token")

    if payload.get("typ") != EXAM_TOKEN_TYPE:
        raise InvalidFieldValue("Invalid exam session token")

    try:
        return ExamTokenClaims(
            user_id=int(payload["sub"]),
            registration_id=int(payload["reg"]),
            screening_test_id=int(payload["test"]),
            started_at=datetime.fromtimestamp(payload["started_at"], tz=timezone.utc),
            deadline=datetime.fromtimestamp(payload["deadline"], tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError):
        raise InvalidFieldValue("Invalid exam session token")
