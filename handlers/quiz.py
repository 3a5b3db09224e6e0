# ==============================================================
# handlers/quiz.py — Quiz session runner endpoints
# ==============================================================
import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from models import QuizSession, StudyAssignment
from services import quiz_sessions
from services.questions import (
    filter_questions_by_study_items, load_questions, order_by_ids, quiz_type_display_name, format_study_items,
)
from services.quiz_runner import (
    QuizRunner, QuizSessionCompleted, PartialPointsRequired, InvalidPartialPoints, NoCurrentQuestion,
    MAX_TIME_SPENT_SECONDS,
)
from utils.security import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/quiz/sessions", tags=["quiz"])


# -------------------------------------------------
# Request bodies
# -------------------------------------------------
class StudyItem(BaseModel):
    book: str
    chapters: List[int]
    verses: Optional[List[int]] = None


class CreateQuizRequest(BaseModel):
    type: str
    title: Optional[str] = None
    description: Optional[str] = None
    question_ids: Optional[List[str]] = None
    study_items: Optional[List[StudyItem]] = None
    assignment_id: Optional[uuid.UUID] = None


class AnswerTiming(BaseModel):
    # browser stopwatch; when absent the countdown is used
    time_spent_seconds: Optional[float] = Field(None, ge=0, le=MAX_TIME_SPENT_SECONDS, allow_inf_nan=False)


class PartialAward(AnswerTiming):
    points: int = Field(..., ge=0)


class ApprovalRequest(BaseModel):
    status: str


# -------------------------------------------------
# Helpers
# -------------------------------------------------
def serialize_session(quiz: QuizSession, runner: Optional[QuizRunner] = None) -> dict:
    runner = runner or QuizRunner.from_session(quiz)
    return {
        "id": str(quiz.id),
        "type": quiz.type,
        "type_name": quiz_type_display_name(quiz.type),
        "title": quiz.title,
        "description": quiz.description,
        "team_id": str(quiz.team_id) if quiz.team_id else None,
        "assignment_id": str(quiz.assignment_id) if quiz.assignment_id else None,
        "max_points": quiz.max_points,
        "estimated_minutes": quiz.estimated_minutes,
        "bonus_xp": quiz.bonus_xp or 0,
        "total_actual_time_spent_seconds": quiz.total_actual_time_spent_seconds or 0,
        "approval_status": quiz.approval_status,
        "state": runner.snapshot(),
        "stats": runner.stats(),
    }


async def _load_owned(session: AsyncSession, session_id: uuid.UUID, user: CurrentUser) -> QuizSession:
    try:
        return await quiz_sessions.get_owned_session(session, session_id, user.id)
    except quiz_sessions.QuizSessionNotFound:
        raise HTTPException(status_code=404, detail="Quiz session not found")
    except quiz_sessions.QuizSessionForbidden:
        raise HTTPException(status_code=403, detail="Not your quiz session")


def _runner_error(exc: Exception) -> HTTPException:
    if isinstance(exc, PartialPointsRequired):
        return HTTPException(
            status_code=409,
            detail={"error": "Partial points required", "max_points": exc.max_points},
        )
    if isinstance(exc, (QuizSessionCompleted, NoCurrentQuestion)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, InvalidPartialPoints):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


async def _apply(session: AsyncSession, quiz: QuizSession, runner: QuizRunner, updates: dict) -> dict:
    if updates:
        await quiz_sessions.update_quiz_session(session, quiz, updates)
    return serialize_session(quiz, runner)


async def _answer(session: AsyncSession, quiz: QuizSession, user: CurrentUser, action) -> dict:
    runner = QuizRunner.from_session(quiz)
    try:
        outcome = action(runner)
    except (QuizSessionCompleted, PartialPointsRequired, InvalidPartialPoints, NoCurrentQuestion) as e:
        raise _runner_error(e)

    await quiz_sessions.log_question_result(session, quiz, uuid.UUID(user.id), outcome)
    await quiz_sessions.update_quiz_session(session, quiz, outcome.updates)
    body = serialize_session(quiz, runner)
    body["result"] = outcome.result.to_json()
    body["completed"] = outcome.completed
    return body


# -------------------------------------------------
# Create / list / load
# -------------------------------------------------
@router.post("", status_code=201)
async def create_session(
    body: CreateQuizRequest,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    user_id = uuid.UUID(user.id)
    profile = await quiz_sessions.get_user_profile(session, user_id)
    team_id = profile.team_id if profile else None

    try:
        if body.type == "quick-start":
            quiz = await quiz_sessions.start_quick_start(session, user_id, team_id=team_id)
            return serialize_session(quiz)

        tier = await quiz_sessions.get_user_tier(session, user_id)

        if body.type == "custom":
            if body.question_ids:
                ids = [uuid.UUID(i) for i in body.question_ids]
                questions = await load_questions(session, tier=tier, ids=ids)
                questions = order_by_ids(questions, ids)
            elif body.study_items:
                pool = await load_questions(session, tier=tier)
                questions = filter_questions_by_study_items(pool, [i.model_dump() for i in body.study_items])
            else:
                raise ValueError("Custom quizzes need question_ids or study_items")
            quiz = await quiz_sessions.create_quiz_session(
                session,
                user_id=user_id,
                quiz_type="custom",
                questions=questions,
                title=body.title or "Custom Quiz",
                description=body.description or "",
                team_id=team_id,
            )
            return serialize_session(quiz)

        if body.type == "study-assignment":
            if not body.assignment_id:
                raise ValueError("Study assignment quizzes need an assignment_id")
            assignment = await session.get(StudyAssignment, body.assignment_id)
            if not assignment:
                raise HTTPException(status_code=404, detail="Assignment not found")
            if str(assignment.user_id) != user.id:
                raise HTTPException(status_code=403, detail="Not your assignment")

            items = [i.model_dump() for i in body.study_items] if body.study_items else assignment.study_items
            pool = await load_questions(session, tier=tier)
            questions = filter_questions_by_study_items(pool, items)
            if not questions:
                raise ValueError("No questions available for this assignment")

            title = f"{items[0]['book']} Study Quiz" if len(items) == 1 else "Multi-Book Study Quiz"
            quiz = await quiz_sessions.create_quiz_session(
                session,
                user_id=user_id,
                quiz_type="study-assignment",
                questions=questions,
                title=body.title or title,
                description=body.description or (
                    f"Study quiz for assignment: {assignment.description or format_study_items(items) or 'Study assignment'}"
                ),
                team_id=assignment.team_id,
                assignment_id=assignment.id,
            )
            return serialize_session(quiz)

        raise ValueError(f"Unknown quiz type '{body.type}'")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
async def list_sessions(
    status: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    quizzes = await quiz_sessions.list_quiz_sessions(session, uuid.UUID(user.id), status=status)
    return {"sessions": [serialize_session(q) for q in quizzes]}


@router.get("/{session_id}")
async def get_session_state(
    session_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    quiz = await _load_owned(session, session_id, user)
    return serialize_session(quiz)


# -------------------------------------------------
# Timer
# -------------------------------------------------
@router.post("/{session_id}/timer/start")
async def start_timer(session_id: uuid.UUID, user: CurrentUser = Depends(get_current_user),
                      session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    runner = QuizRunner.from_session(quiz)
    try:
        updates = runner.start_timer()
    except (QuizSessionCompleted, NoCurrentQuestion) as e:
        raise _runner_error(e)
    return await _apply(session, quiz, runner, updates)


@router.post("/{session_id}/timer/tick")
async def tick_timer(session_id: uuid.UUID, seconds: int = Query(1, ge=1, le=600),
                     user: CurrentUser = Depends(get_current_user),
                     session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    runner = QuizRunner.from_session(quiz)
    updates = {}
    try:
        for _ in range(seconds):
            step = runner.tick()
            if not step:
                break
            updates.update(step)
    except QuizSessionCompleted as e:
        raise _runner_error(e)
    return await _apply(session, quiz, runner, updates)


@router.post("/{session_id}/timer/stop")
async def stop_timer(session_id: uuid.UUID, user: CurrentUser = Depends(get_current_user),
                     session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    runner = QuizRunner.from_session(quiz)
    try:
        updates = runner.stop_timer()
    except QuizSessionCompleted as e:
        raise _runner_error(e)
    return await _apply(session, quiz, runner, updates)


# -------------------------------------------------
# Answer / question view
# -------------------------------------------------
@router.post("/{session_id}/answer")
async def show_answer(session_id: uuid.UUID, user: CurrentUser = Depends(get_current_user),
                      session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    runner = QuizRunner.from_session(quiz)
    try:
        updates = runner.show_answer()
    except (QuizSessionCompleted, NoCurrentQuestion) as e:
        raise _runner_error(e)
    return await _apply(session, quiz, runner, updates)


@router.post("/{session_id}/question")
async def show_question(session_id: uuid.UUID, user: CurrentUser = Depends(get_current_user),
                        session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    runner = QuizRunner.from_session(quiz)
    try:
        updates = runner.show_question()
    except (QuizSessionCompleted, NoCurrentQuestion) as e:
        raise _runner_error(e)
    return await _apply(session, quiz, runner, updates)


@router.post("/{session_id}/correct")
async def mark_correct(session_id: uuid.UUID, body: AnswerTiming = AnswerTiming(),
                       user: CurrentUser = Depends(get_current_user),
                       session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    return await _answer(session, quiz, user, lambda r: r.mark_correct(body.time_spent_seconds))


@router.post("/{session_id}/incorrect")
async def mark_incorrect(session_id: uuid.UUID, body: AnswerTiming = AnswerTiming(),
                         user: CurrentUser = Depends(get_current_user),
                         session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    return await _answer(session, quiz, user, lambda r: r.mark_incorrect(body.time_spent_seconds))


@router.post("/{session_id}/partial")
async def award_partial(session_id: uuid.UUID, body: PartialAward,
                        user: CurrentUser = Depends(get_current_user),
                        session: AsyncSession = Depends(get_session)):
    quiz = await _load_owned(session, session_id, user)
    return await _answer(session, quiz, user, lambda r: r.award_partial(body.points, body.time_spent_seconds))


# -------------------------------------------------
# Delete / approval
# -------------------------------------------------
@router.delete("/{session_id}")
async def delete_session(session_id: uuid.UUID, user: CurrentUser = Depends(get_current_user),
                         session: AsyncSession = Depends(get_session)):
    try:
        return await quiz_sessions.delete_quiz_session(session, session_id, uuid.UUID(user.id))
    except quiz_sessions.QuizSessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except quiz_sessions.QuizSessionForbidden as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.patch("/{session_id}/approval")
async def set_approval(session_id: uuid.UUID, body: ApprovalRequest,
                       user: CurrentUser = Depends(get_current_user),
                       session: AsyncSession = Depends(get_session)):
    try:
        quiz = await quiz_sessions.set_approval_status(session, session_id, body.status, uuid.UUID(user.id))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except quiz_sessions.QuizSessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except quiz_sessions.QuizSessionForbidden as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"id": str(quiz.id), "approval_status": quiz.approval_status}
