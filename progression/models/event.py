from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from progression.database import Base


class Event(Base):
    """Minimal event row; event CRUD lives in another service."""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    registrations = relationship("Registration", back_populates="event", cascade="all, delete-orphan")
    screening_tests = relationship("ScreeningTest", back_populates="event", cascade="all, delete-orphan")
