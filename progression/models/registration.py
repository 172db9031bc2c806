from sqlalchemy import (
    Column, Integer, String, Text, Enum, Boolean, DateTime, ForeignKey,
    Numeric, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from progression.database import Base


class ScreeningStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class PresentationStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"


class QualificationStatus(str, enum.Enum):
    PENDING = "pending"
    QUALIFIED = "qualified"
    REJECTED = "rejected"


class AwardType(str, enum.Enum):
    NONE = "none"
    WINNER = "winner"
    RUNNER_UP = "runner_up"


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_registrations_user_event"),
        CheckConstraint(
            "admin_score IS NULL OR (admin_score >= 0 AND admin_score <= 100)",
            name="ck_registrations_admin_score_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    registered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=True)  # written by the payment service

    attended = Column(Boolean, default=False, nullable=False)

    # Screening
    screening_status = Column(Enum(ScreeningStatus), default=ScreeningStatus.PENDING, nullable=False, index=True)
    screening_test_id = Column(Integer, ForeignKey("screening_tests.id", ondelete="SET NULL"), nullable=True)
    # Set when the participant opens an exam session; cleared once it is graded
    screening_started_at = Column(DateTime(timezone=True), nullable=True)
    screening_submitted_at = Column(DateTime(timezone=True), nullable=True)
    # Copied from the authoritative attempt at grading time
    screening_score = Column(Integer, nullable=True, index=True)
    screening_passed = Column(Boolean, nullable=True, index=True)

    # Project submission
    presentation_status = Column(Enum(PresentationStatus), default=PresentationStatus.PENDING, nullable=False)
    repository_url = Column(String(500), nullable=True)
    demo_url = Column(String(500), nullable=True)
    presentation_url = Column(String(500), nullable=True)
    presentation_notes = Column(Text, nullable=True)
    presentation_submitted_at = Column(DateTime(timezone=True), nullable=True)

    # Qualification
    qualification_status = Column(Enum(QualificationStatus), default=QualificationStatus.PENDING, nullable=False)
    qualification_remarks = Column(Text, nullable=True)
    qualified_at = Column(DateTime(timezone=True), nullable=True)
    qualified_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Award
    award_type = Column(Enum(AwardType), default=AwardType.NONE, nullable=False)
    award_assigned_at = Column(DateTime(timezone=True), nullable=True)
    award_assigned_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Admin review
    admin_notes = Column(Text, nullable=True)
    admin_score = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id], backref="registrations")
    event = relationship("Event", back_populates="registrations")
    screening_test = relationship("ScreeningTest")
    test_attempts = relationship("TestAttempt", back_populates="registration", cascade="all, delete-orphan")
