import asyncio
from dataclasses import asdict
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from redis.asyncio import Redis
from sqlalchemy import select, update, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from constants.exam import CATEGORIES_BY_SECTION, DIFFICULTIES, SECTIONS, TRACKS
from core.config import settings
from core.exceptions import (
    AppError,
    ForbiddenError,
    GenerationError,
    GenerationInProgressError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from core.logger import logger
from models.answer import SessionAnswer
from models.session import SessionStatus, SessionType, StudySession
from services import lifecycle
from services.batch_plan import PlannedBatch, exam_plan, practice_plan
from services.generation_context import GenerationContext
from services.generation_logger import BatchLog, GenerationLogger
from services.generation_service import BatchGenerator, BatchParams, BatchResult
from services.question_schema import QuestionFormatError, load_stored_question
from services.scoring_service import ScoreReport, compute_scores
from utils.clock import utcnow


def session_plan(session: StudySession) -> List[PlannedBatch]:
    if session.session_type == SessionType.EXAM:
        return exam_plan(session.track, session.total_questions, session.batch_size)
    return practice_plan(
        session.section,
        session.categories or [],
        session.difficulty,
        session.total_questions,
        session.batch_size,
    )


def needs_more_questions(session: StudySession) -> bool:
    return session.generated_batches < len(session_plan(session))


class SessionService:
    """Creates sessions, drives their status transitions and appends question batches."""

    def __init__(
        self,
        db: AsyncSession,
        redis: Optional[Redis] = None,
        generator: Optional[BatchGenerator] = None,
        generation_logger: Optional[GenerationLogger] = None,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.redis = redis
        self.generator = generator or BatchGenerator()
        self.generation_logger = generation_logger or (GenerationLogger(redis) if redis is not None else None)
        self.clock = clock

    # === Loading ===

    async def _load(self, session_id: str, lock: bool = False) -> StudySession:
        query = select(StudySession).filter(StudySession.id == session_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        session = result.scalar_one_or_none()
        if not session:
            raise NotFoundError("SESSION_NOT_FOUND")
        return session

    async def get_owned(self, session_id: str, user_id: int, lock: bool = False, forbidden: bool = False) -> StudySession:
        """
        Load a session owned by ``user_id``. A foreign session is reported as
        missing unless ``forbidden`` is set.
        """
        session = await self._load(session_id, lock=lock)
        if session.user_id != user_id:
            logger.warning("Session ownership mismatch", session_id=session_id, user_id=user_id)
            if forbidden:
                raise ForbiddenError("SESSION_FORBIDDEN")
            raise NotFoundError("SESSION_NOT_FOUND")
        return session

    async def list_sessions(
        self,
        user_id: int,
        status: Optional[str] = None,
        session_type: Optional[str] = None,
        limit: int = 20,
    ) -> List[StudySession]:
        query = select(StudySession).filter(StudySession.user_id == user_id)
        if status:
            query = query.filter(StudySession.status == status)
        if session_type:
            query = query.filter(StudySession.session_type == session_type)
        query = query.order_by(StudySession.started_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_answers(self, session_id: str) -> List[SessionAnswer]:
        result = await self.db.execute(
            select(SessionAnswer)
            .filter(SessionAnswer.session_id == session_id)
            .order_by(SessionAnswer.question_index)
        )
        return list(result.scalars().all())

    # === Creation ===

    async def create_exam(self, user_id: int, track: str, total_questions: Optional[int] = None) -> Tuple[StudySession, BatchResult]:
        if track not in TRACKS:
            raise ValidationError(details={"track": track})
        total = total_questions or settings.EXAM_TOTAL_QUESTIONS
        if total <= 0:
            raise ValidationError(details={"total_questions": total})

        session = StudySession(
            user_id=user_id,
            session_type=SessionType.EXAM,
            status=SessionStatus.IN_PROGRESS,
            track=track,
            remaining_time_seconds=settings.EXAM_DURATION_SECONDS,
            total_questions=total,
            batch_size=settings.EXAM_BATCH_SIZE,
        )
        return await self._create(session)

    async def create_practice(
        self,
        user_id: int,
        section: str,
        categories: Sequence[str],
        difficulty: str,
        question_count: int,
    ) -> Tuple[StudySession, BatchResult]:
        if section not in SECTIONS:
            raise ValidationError(details={"section": section})
        categories = list(dict.fromkeys(categories or []))
        allowed = CATEGORIES_BY_SECTION[section]
        if not categories or any(c not in allowed for c in categories):
            raise ValidationError(details={"categories": categories})
        if difficulty not in DIFFICULTIES:
            raise ValidationError(details={"difficulty": difficulty})
        count = max(settings.PRACTICE_MIN_QUESTIONS, min(settings.PRACTICE_MAX_QUESTIONS, question_count))

        session = StudySession(
            user_id=user_id,
            session_type=SessionType.PRACTICE,
            status=SessionStatus.IN_PROGRESS,
            section=section,
            categories=categories,
            difficulty=difficulty,
            total_questions=count,
            batch_size=settings.PRACTICE_BATCH_SIZE,
        )
        return await self._create(session)

    async def _create(self, session: StudySession) -> Tuple[StudySession, BatchResult]:
        now = self.clock()
        session.started_at = now
        session.questions = []
        session.generated_batches = 0
        session.generation_context = GenerationContext.empty().to_dict()
        session.generation_in_progress = True
        session.generation_started_at = now
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)
        logger.info(
            "Session created",
            session_id=session.id,
            user_id=session.user_id,
            session_type=session.session_type,
            total_questions=session.total_questions,
        )

        session_id = session.id
        try:
            result = await self._run_generation(session, 0)
            session = await self._apply_batch(session_id, 0, result)
        except (Exception, asyncio.CancelledError):
            await self.db.rollback()
            await self._mark_failed(session_id)
            raise
        return session, result

    async def _mark_failed(self, session_id: str):
        session = await self._load(session_id, lock=True)
        session.status = lifecycle.next_status(session.status, lifecycle.FAIL)
        session.paused_at = None
        session.generation_in_progress = False
        session.generation_started_at = None
        session.ended_at = self.clock()
        await self.db.commit()
        logger.error("Session failed during creation", session_id=session_id)

    # === Generation ===

    async def _run_generation(self, session: StudySession, batch_index: int) -> BatchResult:
        planned = session_plan(session)[batch_index]
        params = BatchParams(
            session_id=session.id,
            batch_index=batch_index,
            batch_size=planned.size,
            section=planned.section,
            categories=planned.categories,
            track=session.track,
            difficulty=planned.difficulty,
        )
        context = GenerationContext.from_dict(session.generation_context)

        try:
            result = await asyncio.wait_for(
                self.generator.generate_batch(params, context),
                timeout=settings.GENERATION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            logger.error("Batch generation timed out", session_id=session.id, batch_index=batch_index)
            await self._log_batch(BatchLog(session_id=session.id, batch_index=batch_index, success=False, error="timeout"))
            raise GenerationError(details={"batch_index": batch_index}) from e
        except AppError as e:
            await self._log_batch(BatchLog(session_id=session.id, batch_index=batch_index, success=False, error=e.message_key))
            raise
        except Exception as e:
            logger.exception("Batch generation crashed", session_id=session.id, batch_index=batch_index)
            await self._log_batch(BatchLog(session_id=session.id, batch_index=batch_index, success=False, error=type(e).__name__))
            raise GenerationError(details={"batch_index": batch_index}) from e

        await self._log_batch(BatchLog(
            session_id=session.id,
            batch_index=batch_index,
            success=True,
            duration_ms=result.meta.duration_ms,
            question_count=len(result.questions),
            cache_hit=result.meta.cache_hit,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            cached_tokens=result.usage.cached_tokens,
            cost=result.usage.estimated_cost,
            batch_id=result.meta.batch_id,
            model=result.meta.model,
            logged_at=self.clock().isoformat(),
        ))
        return result

    async def _log_batch(self, entry: BatchLog):
        if self.generation_logger is not None:
            await self.generation_logger.record_batch(entry)

    async def _apply_batch(self, session_id: str, batch_index: int, result: BatchResult) -> StudySession:
        """Append a generated batch, its context and the batch counter in one write."""
        session = await self._load(session_id, lock=True)
        if session.generated_batches != batch_index:
            session.generation_in_progress = False
            session.generation_started_at = None
            await self.db.commit()
            raise InvalidStateError("INVALID_BATCH_INDEX", details={"expected_batch_index": session.generated_batches})

        existing = list(session.questions or [])
        capacity = max(0, session.total_questions - len(existing))
        new_questions = [q.model_dump() for q in result.questions[:capacity]]

        session.questions = existing + new_questions
        session.generation_context = result.updated_context.to_dict()
        session.generated_batches = batch_index + 1
        session.generation_in_progress = False
        session.generation_started_at = None
        await self.db.commit()
        await self.db.refresh(session)
        return session

    async def _acquire_generation_lock(self, session_id: str):
        now = self.clock()
        stale_before = now - timedelta(seconds=settings.GENERATION_TIMEOUT_SECONDS * 2)
        result = await self.db.execute(
            update(StudySession)
            .where(
                StudySession.id == session_id,
                or_(
                    StudySession.generation_in_progress.is_(False),
                    StudySession.generation_started_at < stale_before,
                ),
            )
            .values(generation_in_progress=True, generation_started_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            raise GenerationInProgressError("GENERATION_IN_PROGRESS")

    async def _release_generation_lock(self, session_id: str):
        await self.db.execute(
            update(StudySession)
            .where(StudySession.id == session_id)
            .values(generation_in_progress=False, generation_started_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def generate_next_batch(self, session_id: str, user_id: int, batch_index: int) -> Tuple[StudySession, BatchResult]:
        """
        Generate batch ``batch_index`` for an in-progress session. Batches are
        strictly sequential and only one generation may run per session.
        """
        session = await self.get_owned(session_id, user_id)
        if session.status != SessionStatus.IN_PROGRESS:
            raise InvalidStateError("SESSION_NOT_IN_PROGRESS", details={"status": session.status})

        planned = len(session_plan(session))
        if session.generated_batches >= planned:
            raise InvalidStateError("ALL_QUESTIONS_GENERATED", details={"generated_batches": session.generated_batches})
        if batch_index != session.generated_batches:
            raise ValidationError(
                "INVALID_BATCH_INDEX",
                details={"expected_batch_index": session.generated_batches, "requested_batch_index": batch_index},
            )

        await self._acquire_generation_lock(session_id)
        try:
            await self.db.refresh(session)
            result = await self._run_generation(session, batch_index)
        except Exception:
            await self.db.rollback()
            await self._release_generation_lock(session_id)
            raise

        session = await self._apply_batch(session_id, batch_index, result)
        logger.info(
            "Batch appended",
            session_id=session_id,
            batch_index=batch_index,
            questions=len(session.questions),
            generated_batches=session.generated_batches,
        )
        return session, result

    # === Transitions ===

    async def pause(
        self,
        session_id: str,
        user_id: int,
        remaining_time_seconds: Optional[int] = None,
        time_spent_seconds: Optional[int] = None,
    ) -> StudySession:
        if remaining_time_seconds is not None and remaining_time_seconds < 0:
            raise ValidationError("INVALID_REMAINING_TIME")
        if time_spent_seconds is not None and time_spent_seconds < 0:
            raise ValidationError(details={"time_spent_seconds": time_spent_seconds})

        session = await self.get_owned(session_id, user_id, lock=True, forbidden=True)
        new_status = lifecycle.next_status(session.status, lifecycle.PAUSE)

        result = await self.db.execute(
            select(StudySession.id).filter(
                StudySession.user_id == user_id,
                StudySession.session_type == session.session_type,
                StudySession.status == SessionStatus.PAUSED,
                StudySession.id != session_id,
            ).limit(1)
        )
        other_paused = result.scalar_one_or_none()
        if other_paused:
            raise InvalidStateError(
                "PAUSE_LIMIT_REACHED",
                details={"paused_session_id": other_paused},
                status_code=409,
            )

        session.status = new_status
        session.paused_at = self.clock()
        if remaining_time_seconds is not None and session.session_type == SessionType.EXAM:
            session.remaining_time_seconds = remaining_time_seconds
        if time_spent_seconds is not None:
            session.time_spent_seconds = time_spent_seconds
        await self.db.commit()
        await self.db.refresh(session)
        logger.info("Session paused", session_id=session_id, user_id=user_id, remaining=session.remaining_time_seconds)
        return session

    async def complete(self, session_id: str, user_id: int, time_spent_seconds: Optional[int] = None) -> Tuple[StudySession, ScoreReport]:
        session = await self.get_owned(session_id, user_id, lock=True)
        session.status = lifecycle.next_status(session.status, lifecycle.COMPLETE)

        answers = await self.get_answers(session_id)
        report = compute_scores(answers, session.questions or [])

        session.verbal_score = report.verbal_score
        session.quantitative_score = report.quantitative_score
        session.overall_score = report.overall_score
        session.strengths = [asdict(s) for s in report.strengths]
        session.weaknesses = [asdict(w) for w in report.weaknesses]
        session.ended_at = self.clock()
        if time_spent_seconds is not None:
            session.time_spent_seconds = time_spent_seconds
        await self.db.commit()
        await self.db.refresh(session)
        logger.info("Session completed", session_id=session_id, overall=report.overall_score, answered=len(answers))
        return session, report

    async def abandon(self, session_id: str, user_id: int, time_spent_seconds: Optional[int] = None) -> StudySession:
        session = await self.get_owned(session_id, user_id, lock=True)
        session.status = lifecycle.next_status(session.status, lifecycle.ABANDON)
        session.ended_at = self.clock()
        if time_spent_seconds is not None:
            session.time_spent_seconds = time_spent_seconds
        await self.db.commit()
        await self.db.refresh(session)
        logger.info("Session abandoned", session_id=session_id)
        return session

    async def sync_timer(self, session_id: str, user_id: int, time_spent_seconds: int) -> Dict:
        if time_spent_seconds < 0:
            raise ValidationError(details={"time_spent_seconds": time_spent_seconds})
        session = await self.get_owned(session_id, user_id, lock=True)
        if session.status != SessionStatus.IN_PROGRESS:
            raise InvalidStateError("SESSION_NOT_IN_PROGRESS", details={"status": session.status})

        session.time_spent_seconds = time_spent_seconds
        remaining = None
        if session.session_type == SessionType.EXAM:
            remaining = max(0, settings.EXAM_DURATION_SECONDS - time_spent_seconds)
            session.remaining_time_seconds = remaining
        await self.db.commit()
        return {
            "time_spent_seconds": time_spent_seconds,
            "remaining_seconds": remaining,
            "is_expired": remaining == 0,
        }

    # === Answers ===

    async def submit_answer(
        self,
        session_id: str,
        user_id: int,
        question_index: int,
        selected_answer: int,
        time_spent_seconds: int = 0,
    ) -> Dict:
        if not 0 <= selected_answer <= 3:
            raise ValidationError(details={"selected_answer": selected_answer})

        session = await self.get_owned(session_id, user_id, lock=True)
        if session.status != SessionStatus.IN_PROGRESS:
            raise InvalidStateError("SESSION_NOT_IN_PROGRESS", details={"status": session.status})

        questions = session.questions or []
        if not 0 <= question_index < len(questions):
            raise ValidationError("INVALID_QUESTION_INDEX", details={"question_index": question_index})

        existing = await self.db.execute(
            select(func.count(SessionAnswer.id)).filter(
                SessionAnswer.session_id == session_id,
                SessionAnswer.question_index == question_index,
            )
        )
        if existing.scalar():
            raise InvalidStateError("ANSWER_ALREADY_SUBMITTED", status_code=409)

        try:
            question = load_stored_question(questions[question_index])
        except QuestionFormatError as e:
            logger.error("Stored question is unreadable", session_id=session_id, index=question_index, error=str(e))
            raise InvalidStateError("INVALID_QUESTION_INDEX") from e

        is_correct = selected_answer == question.answer_index
        self.db.add(SessionAnswer(
            session_id=session_id,
            question_index=question_index,
            question_id=question.id,
            selected_answer=selected_answer,
            is_correct=is_correct,
            time_spent_seconds=max(0, time_spent_seconds),
        ))
        session.questions_answered = (session.questions_answered or 0) + 1
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise InvalidStateError("ANSWER_ALREADY_SUBMITTED", status_code=409) from e

        return {
            "question_index": question_index,
            "is_correct": is_correct,
            "correct_answer": question.answer_index,
            "explanation": question.explanation,
            "solving_strategy": question.solving_strategy,
            "tip": question.tip,
            "questions_answered": session.questions_answered,
        }
