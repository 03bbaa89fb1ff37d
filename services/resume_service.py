from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import logger
from models.answer import SessionAnswer
from models.session import SessionStatus, StudySession
from services import lifecycle
from services.question_schema import QuestionFormatError, load_stored_question
from services.session_service import SessionService, needs_more_questions
from utils.clock import seconds_between, utcnow


@dataclass
class ResumeResult:
    session: StudySession
    questions: List[Dict[str, Any]]
    answers: List[SessionAnswer]
    needs_more_questions: bool
    already_resumed: bool


def build_question_views(questions: Sequence[Dict[str, Any]], answers: Sequence[SessionAnswer]) -> List[Dict[str, Any]]:
    """
    Client view of the stored questions. The answer key and explanation are
    only attached to questions that already have an answer.
    """
    by_index = {a.question_index: a for a in answers}
    views = []
    for index, raw in enumerate(questions):
        try:
            question = load_stored_question(raw)
        except QuestionFormatError as e:
            logger.warning("Skipping unreadable stored question", index=index, error=str(e)[:200])
            continue

        view = question.public_view()
        view["index"] = index
        answer = by_index.get(index)
        if answer is not None:
            view.update(
                answer_index=question.answer_index,
                explanation=question.explanation,
                solving_strategy=question.solving_strategy,
                tip=question.tip,
                selected_answer=answer.selected_answer,
                is_correct=answer.is_correct,
            )
        views.append(view)
    return views


class ResumeReconciler:
    """Resumes paused sessions and rebuilds the client-side state."""

    def __init__(self, db: AsyncSession, clock: Callable = utcnow):
        self.db = db
        self.clock = clock
        self.sessions = SessionService(db, clock=clock)

    async def resume(self, session_id: str, user_id: int) -> ResumeResult:
        session = await self.sessions.get_owned(session_id, user_id, lock=True, forbidden=True)

        already_resumed = session.status == SessionStatus.IN_PROGRESS and session.paused_at is None
        if already_resumed:
            # Another request resumed it first
            await self.db.commit()
            logger.info("Session already resumed", session_id=session_id)
        else:
            session.status = lifecycle.next_status(session.status, lifecycle.RESUME)
            now = self.clock()
            pause_duration = seconds_between(session.paused_at, now) if session.paused_at else 0
            session.time_paused_seconds = (session.time_paused_seconds or 0) + pause_duration
            session.paused_at = None
            await self.db.commit()
            await self.db.refresh(session)
            logger.info("Session resumed", session_id=session_id, pause_duration=pause_duration)

        return await self.snapshot(session, already_resumed=already_resumed)

    async def snapshot(self, session: StudySession, already_resumed: bool = False) -> ResumeResult:
        answers = await self.sessions.get_answers(session.id)
        return ResumeResult(
            session=session,
            questions=build_question_views(session.questions or [], answers),
            answers=answers,
            needs_more_questions=needs_more_questions(session),
            already_resumed=already_resumed,
        )
