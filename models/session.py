import uuid

from sqlalchemy import Column, Integer, String, BigInteger, Boolean, DateTime, JSON, Index
from models.base import Base, TimestampMixin
from utils.clock import utcnow


class SessionStatus:
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    FAILED = "failed"


class SessionType:
    EXAM = "exam"
    PRACTICE = "practice"


class StudySession(Base, TimestampMixin):
    __tablename__ = "study_sessions"
    __table_args__ = (
        Index("ix_study_sessions_user_type_status", "user_id", "session_type", "status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(BigInteger, index=True, nullable=False)
    session_type = Column(String(16), nullable=False)
    status = Column(String(16), default=SessionStatus.IN_PROGRESS, nullable=False)

    # Exam
    track = Column(String(16), nullable=True)
    remaining_time_seconds = Column(Integer, nullable=True)

    # Practice
    section = Column(String(16), nullable=True)
    difficulty = Column(String(16), nullable=True)
    categories = Column(JSON, nullable=True)

    # Timing
    started_at = Column(DateTime, default=utcnow, nullable=False)
    paused_at = Column(DateTime, nullable=True)
    time_paused_seconds = Column(Integer, default=0, nullable=False)
    time_spent_seconds = Column(Integer, default=0, nullable=False)
    ended_at = Column(DateTime, nullable=True)

    # Content
    questions = Column(JSON, default=list, nullable=False)
    total_questions = Column(Integer, nullable=False)
    batch_size = Column(Integer, nullable=False)
    generated_batches = Column(Integer, default=0, nullable=False)
    generation_context = Column(JSON, nullable=True)
    generation_in_progress = Column(Boolean, default=False, nullable=False)
    generation_started_at = Column(DateTime, nullable=True)
    questions_answered = Column(Integer, default=0, nullable=False)

    # Results, populated on completion
    verbal_score = Column(Integer, nullable=True)
    quantitative_score = Column(Integer, nullable=True)
    overall_score = Column(Integer, nullable=True)
    strengths = Column(JSON, nullable=True)
    weaknesses = Column(JSON, nullable=True)

    @property
    def questions_count(self) -> int:
        return len(self.questions or [])
