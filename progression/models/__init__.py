from progression.models.user import User, UserRole
from progression.models.event import Event
from progression.models.registration import (
    Registration,
    ScreeningStatus,
    PresentationStatus,
    QualificationStatus,
    AwardType,
)
from progression.models.screening_test import ScreeningTest, ScreeningQuestion
from progression.models.test_attempt import (
    TestAttempt,
    AttemptStatus,
    authoritative_attempt,
)

__all__ = [
    "User",
    "UserRole",
    "Event",
    "Registration",
    "ScreeningStatus",
    "PresentationStatus",
    "QualificationStatus",
    "AwardType",
    "ScreeningTest",
    "ScreeningQuestion",
    "TestAttempt",
    "AttemptStatus",
    "authoritative_attempt",
]
