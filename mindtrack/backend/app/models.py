from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    assessments = relationship("AssessmentRecord", back_populates="user")
    mood_entries = relationship("MoodEntry", back_populates="user")


class AssessmentRecord(Base):
    __tablename__ = "assessments"
    __table_args__ = (
        Index("ix_assessments_user_date", "user_id", "date"),
        Index("ix_assessments_user_type", "user_id", "type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String, nullable=False)
    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    score = Column(Integer, nullable=False)
    max_score = Column(Integer, nullable=False)
    severity = Column(String, nullable=False)
    responses_json = Column(String, nullable=False, default="{}")
    notes = Column(String, nullable=False, default="")
    recommendations_json = Column(String, nullable=False, default="[]")
    follow_up_date = Column(DateTime, nullable=True)
    prediction_status = Column(String, nullable=True)
    prediction_confidence = Column(Float, nullable=True)
    prediction_model_version = Column(String, nullable=True)
    predicted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="assessments")


class MoodEntry(Base):
    __tablename__ = "mood_entries"
    __table_args__ = (
        Index("ix_mood_entries_user_date", "user_id", "entry_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    entry_date = Column(Date, nullable=False)
    mood = Column(Integer, nullable=False)
    energy = Column(Integer, nullable=False)
    anxiety = Column(Integer, nullable=False)
    sleep = Column(Integer, nullable=False)
    notes = Column(String, nullable=False, default="")
    factors_json = Column(String, nullable=False, default="[]")
    location = Column(String, nullable=False, default="")
    tags_json = Column(String, nullable=False, default="[]")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="mood_entries")
