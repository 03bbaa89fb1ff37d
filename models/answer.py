from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, TimestampMixin


class SessionAnswer(Base, TimestampMixin):
    __tablename__ = "session_answers"
    __table_args__ = (
        UniqueConstraint("session_id", "question_index", name="uq_session_answers_session_question"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("study_sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    question_index = Column(Integer, nullable=False)
    question_id = Column(String(64), nullable=False)
    selected_answer = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    time_spent_seconds = Column(Integer, default=0, nullable=False)

    session = relationship("StudySession", backref="answers")
