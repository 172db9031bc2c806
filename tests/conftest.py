import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from progression.database import Base, get_db
from progression.main import app
from progression.models import (
    User, UserRole, Event, Registration, ScreeningTest, ScreeningQuestion,
    TestAttempt, AttemptStatus, ScreeningStatus,
)
from progression.auth.jwt import create_access_token
from progression.services.scoring import sync_screening_result

BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role=UserRole.PARTICIPANT, full_name=None, email=None, profile_url=None):
        n = next(counter)
        user = User(
            email=email or f"user{n}@example.com",
            full_name=full_name or f"User {n:02d}",
            profile_url=profile_url,
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN, full_name="Admin User", email="admin@example.com")


@pytest.fixture
def event(db):
    event = Event(title="Spring Hackathon")
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


@pytest.fixture
def make_registration(db, make_user, event):
    counter = itertools.count(1)

    def _make(user=None, event_id=None, **fields):
        n = next(counter)
        user = user or make_user()
        fields.setdefault("registered_at", BASE_TIME + timedelta(minutes=n))
        registration = Registration(user_id=user.id, event_id=event_id or event.id, **fields)
        db.add(registration)
        db.commit()
        db.refresh(registration)
        return registration

    return _make


@pytest.fixture
def make_screening_test(db, event, admin):
    def _make(question_count=10, passing_score=70, timer_minutes=30, event_id=None, deadline=None):
        screening_test = ScreeningTest(
            event_id=event_id or event.id,
            title="Screening Test",
            instructions="Answer every question.",
            timer_minutes=timer_minutes,
            passing_score=passing_score,
            deadline=deadline,
            is_active=True,
            created_by=admin.id,
            questions=[
                ScreeningQuestion(
                    prompt=f"Question {i + 1}",
                    options=["A", "B", "C", "D"],
                    correct_option=i % 4,
                    points=1,
                    order_index=i,
                )
                for i in range(question_count)
            ],
        )
        db.add(screening_test)
        db.commit()
        db.refresh(screening_test)
        return screening_test

    return _make


@pytest.fixture
def make_attempt(db):
    """Insert a graded attempt directly and keep the registration's copy of the result in step."""

    def _make(registration, screening_test, score, passing_score=70, submitted_at=None,
              status=AttemptStatus.SUBMITTED, time_taken_seconds=300, tab_switches=0):
        submitted_at = submitted_at or BASE_TIME + timedelta(days=1)
        attempt = TestAttempt(
            registration_id=registration.id,
            screening_test_id=screening_test.id,
            started_at=submitted_at - timedelta(seconds=time_taken_seconds),
            submitted_at=submitted_at,
            answers={},
            score=score,
            correct_count=score // 10,
            total_questions=10,
            passed=score >= passing_score,
            time_taken_seconds=time_taken_seconds,
            tab_switches=tab_switches,
            status=status,
        )
        db.add(attempt)
        registration.screening_status = ScreeningStatus.COMPLETED
        registration.screening_test_id = screening_test.id
        db.flush()
        sync_screening_result(db, registration)
        db.commit()
        db.refresh(attempt)
        return attempt

    return _make


@pytest.fixture
def answers_for():
    def _answers(screening_test, correct):
        """Answer map with exactly ``correct`` right answers, the rest wrong."""
        answers = {}
        for index, question in enumerate(screening_test.questions):
            if index < correct:
                answers[str(question.id)] = question.correct_option
            else:
                answers[str(question.id)] = (question.correct_option + 1) % len(question.options)
        return answers

    return _answers


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user.id), "role": user.role.value})
        return {"Authorization": f"Bearer {token}"}

    return _headers
