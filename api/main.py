import hashlib
import hmac
import time
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import (
    AnswerFeedback,
    AnswerOut,
    AnswerSubmit,
    BatchOut,
    BatchRequest,
    CompletionOut,
    ErrorResponse,
    ExamCreate,
    GenerationLogOut,
    GenerationMetaOut,
    GenerationMetricsOut,
    PauseOut,
    PauseRequest,
    PracticeCreate,
    ResumeOut,
    SessionCreated,
    SessionDetail,
    SessionOut,
    SessionUpdate,
    TimerOut,
    TimerSync,
)
from constants.messages import Messages
from core.config import settings
from core.exceptions import AppError, AuthError, ValidationError
from core.logger import logger
from db.session import get_db, get_redis
from services.generation_logger import GenerationLogger
from services.generation_service import BatchGenerator, BatchResult
from services.rate_limiter import RateLimiter
from services.resume_service import ResumeReconciler
from services.session_service import SessionService, needs_more_questions

API_DESCRIPTION = """
## Exam Prep Session API

Exam and practice sessions with batched question generation and pause/resume.

### Authentication

Every `/api` endpoint requires a signed token issued by the auth provider:

- Header: `X-Auth-Token: <user_id>:<timestamp>:<hmac_sha256>`

### Localization

Error messages are Arabic by default. Send `Accept-Language: en` for English.

### Rate Limits

- Session creation is limited per user (see `SESSION_CREATE_LIMIT`).
"""

TAGS_METADATA = [
    {"name": "sessions", "description": "Create, list, pause, resume and finish exam/practice sessions."},
    {"name": "generation", "description": "Batched question generation and its metrics."},
    {"name": "answers", "description": "Answer submission and history."},
    {"name": "info", "description": "Public endpoints."},
]

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Authentication required"},
    404: {"model": ErrorResponse, "description": "Session not found"},
}

app = FastAPI(
    title="Exam Prep Session API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
)

if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# === Localization & errors ===

def request_lang(request: Request) -> str:
    accept = request.headers.get("accept-language", "")
    return "EN" if accept.lower().startswith("en") else Messages.DEFAULT_LANG


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(request_lang(request)))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = ValidationError(details={"errors": [
        {"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()
    ]})
    return JSONResponse(status_code=error.status_code, content=error.to_dict(request_lang(request)))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content=AppError().to_dict(request_lang(request)))


# === Auth ===

def sign_token(user_id: int, timestamp: Optional[int] = None) -> str:
    """Issue a token in the format the auth provider uses."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    data = f"{user_id}:{timestamp}"
    signature = hmac.new(settings.AUTH_SECRET.encode(), data.encode(), hashlib.sha256).hexdigest()
    return f"{data}:{signature}"


def verify_token(token: str) -> Optional[int]:
    """
    Verify a signed token.
    Format: {user_id}:{timestamp}:{signature}
    """
    if not token:
        return None

    parts = token.split(':')
    if len(parts) != 3:
        return None
    user_id_str, timestamp_str, signature = parts

    try:
        user_id = int(user_id_str)
        timestamp = int(timestamp_str)
    except ValueError:
        return None

    if int(time.time()) - timestamp > settings.TOKEN_TTL_SECONDS:
        logger.warning("Token expired", user_id=user_id_str)
        return None

    data = f"{user_id_str}:{timestamp_str}"
    expected_signature = hmac.new(settings.AUTH_SECRET.encode(), data.encode(), hashlib.sha256).hexdigest()
    if hmac.compare_digest(expected_signature, signature):
        return user_id

    logger.warning("Token signature mismatch", user_id=user_id_str)
    return None


def get_current_user(x_auth_token: str = Header(None)) -> int:
    user_id = verify_token(x_auth_token)
    if user_id is None:
        raise AuthError("UNAUTHORIZED")
    return user_id


# === Dependencies ===

def get_generator() -> BatchGenerator:
    return BatchGenerator()


def get_session_service(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    generator: BatchGenerator = Depends(get_generator),
) -> SessionService:
    return SessionService(db, redis=redis, generator=generator)


def get_resume_reconciler(db: AsyncSession = Depends(get_db)) -> ResumeReconciler:
    return ResumeReconciler(db)


def generation_meta(result: BatchResult) -> GenerationMetaOut:
    return GenerationMetaOut(
        provider=result.meta.provider,
        model=result.meta.model,
        cache_hit=result.meta.cache_hit,
        duration_ms=result.meta.duration_ms,
        batch_id=result.meta.batch_id,
        cost=result.usage.estimated_cost,
    )


# === Sessions ===

@app.post(
    "/api/exams",
    response_model=SessionCreated,
    status_code=201,
    tags=["sessions"],
    summary="Start an exam",
    description="Creates an exam session and generates its first batch synchronously.",
    responses={
        **ERROR_RESPONSES,
        429: {"model": ErrorResponse, "description": "Too many sessions created"},
        503: {"model": ErrorResponse, "description": "Generation failed, the session is marked failed"},
    },
)
async def create_exam(
    body: ExamCreate,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
    redis: Redis = Depends(get_redis),
):
    await RateLimiter(redis).hit_session_create(user_id)
    session, result = await service.create_exam(user_id, body.track, body.total_questions)
    return {
        "session": SessionOut.model_validate(session),
        "questions": [q.public_view() for q in result.questions],
        "meta": generation_meta(result),
    }


@app.post(
    "/api/practice",
    response_model=SessionCreated,
    status_code=201,
    tags=["sessions"],
    summary="Start a practice session",
    responses={
        **ERROR_RESPONSES,
        429: {"model": ErrorResponse, "description": "Too many sessions created"},
        503: {"model": ErrorResponse, "description": "Generation failed, the session is marked failed"},
    },
)
async def create_practice(
    body: PracticeCreate,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
    redis: Redis = Depends(get_redis),
):
    await RateLimiter(redis).hit_session_create(user_id)
    session, result = await service.create_practice(
        user_id, body.section, body.categories, body.difficulty, body.question_count
    )
    return {
        "session": SessionOut.model_validate(session),
        "questions": [q.public_view() for q in result.questions],
        "meta": generation_meta(result),
    }


@app.get(
    "/api/sessions",
    response_model=List[SessionOut],
    tags=["sessions"],
    summary="List my sessions",
)
async def list_sessions(
    status: Optional[str] = None,
    session_type: Optional[str] = None,
    limit: int = 20,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    sessions = await service.list_sessions(user_id, status=status, session_type=session_type, limit=min(max(limit, 1), 100))
    return [SessionOut.model_validate(s) for s in sessions]


@app.get(
    "/api/sessions/{session_id}",
    response_model=SessionDetail,
    tags=["sessions"],
    summary="Get a session",
    description="Session summary, questions (answer keys only for answered ones) and answers.",
    responses=ERROR_RESPONSES,
)
async def get_session(
    session_id: str,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
    reconciler: ResumeReconciler = Depends(get_resume_reconciler),
):
    session = await service.get_owned(session_id, user_id)
    snapshot = await reconciler.snapshot(session)
    return {
        "session": SessionOut.model_validate(session),
        "questions": snapshot.questions,
        "answers": [AnswerOut.model_validate(a) for a in snapshot.answers],
        "needs_more_questions": snapshot.needs_more_questions,
    }


@app.post(
    "/api/sessions/{session_id}/pause",
    response_model=PauseOut,
    tags=["sessions"],
    summary="Pause a session",
    responses={
        **ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Session is not in progress"},
        403: {"model": ErrorResponse, "description": "Session belongs to another user"},
        409: {"model": ErrorResponse, "description": "Another session of this type is already paused"},
    },
)
async def pause_session(
    session_id: str,
    request: Request,
    body: Optional[PauseRequest] = None,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    body = body or PauseRequest()
    session = await service.pause(
        session_id, user_id,
        remaining_time_seconds=body.remaining_time_seconds,
        time_spent_seconds=body.time_spent_seconds,
    )
    return {"session": SessionOut.model_validate(session), "message": Messages.get("PAUSED", request_lang(request))}


@app.post(
    "/api/sessions/{session_id}/resume",
    response_model=ResumeOut,
    tags=["sessions"],
    summary="Resume a paused session",
    description="Idempotent: resuming a session that is already in progress succeeds with `already_resumed=true`.",
    responses={
        **ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Session is not paused"},
        403: {"model": ErrorResponse, "description": "Session belongs to another user"},
    },
)
async def resume_session(
    session_id: str,
    request: Request,
    user_id: int = Depends(get_current_user),
    reconciler: ResumeReconciler = Depends(get_resume_reconciler),
):
    result = await reconciler.resume(session_id, user_id)
    message_key = "ALREADY_RESUMED" if result.already_resumed else "RESUMED"
    return {
        "session": SessionOut.model_validate(result.session),
        "questions": result.questions,
        "answers": [AnswerOut.model_validate(a) for a in result.answers],
        "needs_more_questions": result.needs_more_questions,
        "already_resumed": result.already_resumed,
        "message": Messages.get(message_key, request_lang(request)),
    }


@app.patch(
    "/api/sessions/{session_id}",
    response_model=CompletionOut,
    tags=["sessions"],
    summary="Complete or abandon a session",
    responses={**ERROR_RESPONSES, 400: {"model": ErrorResponse, "description": "Session is not in progress"}},
)
async def update_session(
    session_id: str,
    body: SessionUpdate,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    if body.action == "complete":
        session, report = await service.complete(session_id, user_id, body.time_spent_seconds)
        return {"session": SessionOut.model_validate(session), "category_breakdown": report.to_dict()["category_breakdown"]}

    session = await service.abandon(session_id, user_id, body.time_spent_seconds)
    return {"session": SessionOut.model_validate(session), "category_breakdown": []}


@app.post(
    "/api/sessions/{session_id}/timer",
    response_model=TimerOut,
    tags=["sessions"],
    summary="Sync the session timer",
    responses=ERROR_RESPONSES,
)
async def sync_timer(
    session_id: str,
    body: TimerSync,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return await service.sync_timer(session_id, user_id, body.time_spent_seconds)


# === Generation ===

@app.post(
    "/api/sessions/{session_id}/questions",
    response_model=BatchOut,
    tags=["generation"],
    summary="Generate the next batch",
    description="Batches are sequential: `batch_index` must equal the session's `generated_batches`.",
    responses={
        **ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Invalid batch index or session not in progress"},
        409: {"model": ErrorResponse, "description": "A batch is already being generated"},
        503: {"model": ErrorResponse, "description": "Generation failed"},
    },
)
async def generate_batch(
    session_id: str,
    body: BatchRequest,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    session, result = await service.generate_next_batch(session_id, user_id, body.batch_index)
    return {
        "batch_index": body.batch_index,
        "questions": [q.public_view() for q in result.questions],
        "generated_batches": session.generated_batches,
        "total_questions": session.total_questions,
        "needs_more_questions": needs_more_questions(session),
        "meta": generation_meta(result),
    }


@app.get(
    "/api/sessions/{session_id}/generation",
    response_model=GenerationLogOut,
    tags=["generation"],
    summary="Generation metrics for a session",
    responses=ERROR_RESPONSES,
)
async def generation_log(
    session_id: str,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
    redis: Redis = Depends(get_redis),
):
    await service.get_owned(session_id, user_id)
    gen_logger = GenerationLogger(redis)
    return {
        "summary": await gen_logger.session_summary(session_id),
        "batches": await gen_logger.batch_logs(session_id),
    }


@app.get(
    "/api/generation/metrics",
    response_model=GenerationMetricsOut,
    tags=["generation"],
    summary="Generation metrics across all sessions",
    responses={401: ERROR_RESPONSES[401]},
)
async def generation_metrics(
    user_id: int = Depends(get_current_user),
    redis: Redis = Depends(get_redis),
):
    return {"summary": await GenerationLogger(redis).performance_summary()}


# === Answers ===

@app.post(
    "/api/sessions/{session_id}/answers",
    response_model=AnswerFeedback,
    tags=["answers"],
    summary="Submit an answer",
    responses={
        **ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Invalid question index or session not in progress"},
        409: {"model": ErrorResponse, "description": "Question already answered"},
    },
)
async def submit_answer(
    session_id: str,
    body: AnswerSubmit,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return await service.submit_answer(
        session_id, user_id, body.question_index, body.selected_answer, body.time_spent_seconds
    )


@app.get(
    "/api/sessions/{session_id}/answers",
    response_model=List[AnswerOut],
    tags=["answers"],
    summary="List answers of a session",
    responses=ERROR_RESPONSES,
)
async def list_answers(
    session_id: str,
    user_id: int = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    await service.get_owned(session_id, user_id)
    answers = await service.get_answers(session_id)
    return [AnswerOut.model_validate(a) for a in answers]


@app.get("/health", tags=["info"], summary="Liveness probe")
async def health():
    return {"status": "ok", "env": settings.ENV}
