"""
SQLAlchemy ORM models for assessment sessions, responses, results and users.

Session status is stored as ``PENDING``, ``IN_PROGRESS``, ``COMPLETED`` or
``CANCELLED``; response types as ``MCQ``, ``LISTENING`` or ``SPEAKING``.
"""

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship

from linguaiq.database.base import ModelBase, utcnow


class UserModel(ModelBase):
    """Learner record updated when a placement assessment completes."""
    __tablename__ = 'app_user'

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(255), nullable=True)
    level = Column(String(8), nullable=True)
    role = Column(String(32), nullable=False, default="learner")
    has_completed_placement_test = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserModel(id='{self.id}', level='{self.level}')>"


class AssessmentSessionModel(ModelBase):
    __tablename__ = 'assessment_session'

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(32), nullable=False, default="LEVELING")
    status = Column(String(16), nullable=False)

    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    # blueprint_id and target_level
    session_metadata = Column("metadata", JSON, nullable=False, default=dict)

    responses = relationship(
        "AssessmentResponseModel",
        back_populates="session",
        order_by="AssessmentResponseModel.id",
        cascade="all, delete-orphan",
    )
    result = relationship(
        "AssessmentResultModel",
        back_populates="session",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index('idx_assessment_session_user_status', user_id, status),
    )

    def __repr__(self):
        return f"<AssessmentSessionModel(id='{self.id}', user_id='{self.user_id}', status='{self.status}')>"


class AssessmentResponseModel(ModelBase):
    """One answer per (session, question); the unique constraint enforces it."""
    __tablename__ = 'assessment_response'

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), ForeignKey('assessment_session.id', ondelete="CASCADE"), nullable=False)
    question_id = Column(String(128), nullable=False)
    question_type = Column(String(16), nullable=False)
    content = Column(JSON, nullable=False, default=dict)
    evaluation = Column(JSON, nullable=True)
    score = Column(Float, nullable=True)
    max_score = Column(Float, nullable=False, default=100.0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    session = relationship("AssessmentSessionModel", back_populates="responses")

    __table_args__ = (
        UniqueConstraint('session_id', 'question_id'),
    )


class AssessmentResultModel(ModelBase):
    """Diagnostic of a finalized session, with a flat summary for reporting."""
    __tablename__ = 'assessment_result'

    session_id = Column(
        String(64), ForeignKey('assessment_session.id', ondelete="CASCADE"), primary_key=True
    )
    level = Column(String(4), nullable=False)
    overall_score = Column(Float, nullable=False)
    diagnostic = Column(JSON, nullable=True)
    skill_scores = Column(JSON, nullable=True)
    strengths = Column(JSON, nullable=True)
    areas_to_improve = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)
    summary = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    session = relationship("AssessmentSessionModel", back_populates="result")
