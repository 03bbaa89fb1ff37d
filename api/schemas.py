from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# === Requests ===

class ExamCreate(BaseModel):
    """Request body for starting a full exam."""
    track: Literal["scientific", "literary"] = Field(..., description="Academic track")
    total_questions: Optional[int] = Field(None, description="Override the default 96 questions", ge=1, le=200)


class PracticeCreate(BaseModel):
    """Request body for starting a practice session."""
    section: Literal["quantitative", "verbal"] = Field(..., description="Section to practice")
    categories: List[str] = Field(..., description="Category slugs from the chosen section", min_length=1)
    difficulty: Literal["easy", "medium", "hard"] = Field("medium", description="Difficulty of every question")
    question_count: int = Field(10, description="Number of questions (clamped to 5..100)", ge=1)


class PauseRequest(BaseModel):
    remaining_time_seconds: Optional[int] = Field(None, description="Exam countdown snapshot")
    time_spent_seconds: Optional[int] = Field(None, description="Active time so far", ge=0)


class BatchRequest(BaseModel):
    batch_index: int = Field(..., description="Index of the batch to generate, must equal generated_batches", ge=0)


class AnswerSubmit(BaseModel):
    question_index: int = Field(..., description="Position of the question in the session", ge=0)
    selected_answer: int = Field(..., description="Chosen choice (0-3)", ge=0, le=3)
    time_spent_seconds: int = Field(0, description="Time spent on this question", ge=0)


class SessionUpdate(BaseModel):
    action: Literal["complete", "abandon"] = Field(..., description="Terminal action")
    time_spent_seconds: Optional[int] = Field(None, ge=0)


class TimerSync(BaseModel):
    time_spent_seconds: int = Field(..., description="Active time so far", ge=0)


# === Responses ===

class CategoryScoreOut(BaseModel):
    category: str
    score: int
    total_questions: int
    correct_answers: int


class SessionOut(BaseModel):
    """Session summary without question content."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_type: str
    status: str
    track: Optional[str] = None
    section: Optional[str] = None
    difficulty: Optional[str] = None
    categories: Optional[List[str]] = None
    total_questions: int
    batch_size: int
    generated_batches: int
    questions_count: int = 0
    questions_answered: int = 0
    remaining_time_seconds: Optional[int] = None
    time_spent_seconds: int = 0
    time_paused_seconds: int = 0
    started_at: datetime
    paused_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    verbal_score: Optional[int] = None
    quantitative_score: Optional[int] = None
    overall_score: Optional[int] = None
    strengths: Optional[List[CategoryScoreOut]] = None
    weaknesses: Optional[List[CategoryScoreOut]] = None


class GenerationMetaOut(BaseModel):
    provider: str
    model: str
    cache_hit: bool
    duration_ms: int
    batch_id: str
    cost: float = 0.0


class SessionCreated(BaseModel):
    session: SessionOut
    questions: List[Dict[str, Any]] = Field(..., description="First batch, answer keys removed")
    meta: GenerationMetaOut


class BatchOut(BaseModel):
    batch_index: int
    questions: List[Dict[str, Any]] = Field(..., description="New questions, answer keys removed")
    generated_batches: int
    total_questions: int
    needs_more_questions: bool
    meta: GenerationMetaOut


class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_index: int
    question_id: str
    selected_answer: int
    is_correct: bool
    time_spent_seconds: int


class AnswerFeedback(BaseModel):
    question_index: int
    is_correct: bool
    correct_answer: int
    explanation: str = ""
    solving_strategy: Optional[str] = None
    tip: Optional[str] = None
    questions_answered: int


class SessionDetail(BaseModel):
    session: SessionOut
    questions: List[Dict[str, Any]]
    answers: List[AnswerOut]
    needs_more_questions: bool


class ResumeOut(SessionDetail):
    already_resumed: bool
    message: str


class PauseOut(BaseModel):
    session: SessionOut
    message: str


class CompletionOut(BaseModel):
    session: SessionOut
    category_breakdown: List[CategoryScoreOut] = Field(default_factory=list)


class TimerOut(BaseModel):
    time_spent_seconds: int
    remaining_seconds: Optional[int] = None
    is_expired: bool


class GenerationLogOut(BaseModel):
    summary: Dict[str, Any]
    batches: List[Dict[str, Any]]


class GenerationMetricsOut(BaseModel):
    summary: Dict[str, Any] = Field(..., description="Generation totals across all sessions")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Localized message")
    code: str = Field(..., description="Stable error code")
    details: Optional[Dict[str, Any]] = None
