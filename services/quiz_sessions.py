# ===============================================================
# services/quiz_sessions.py
# ===============================================================
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpers import utcnow, mask_sensitive
from models import (
    QuizSession, QuizQuestionLog, StudyAssignment, Subscription, Team, TeamMember, UserProfile,
)
from services import assignments, gamification
from services.questions import quiz_metadata, pick_quick_start_questions, load_questions
from services.quiz_runner import AnswerOutcome, summarize_results
from utils.dates import london_date, parse_db_date

logger = logging.getLogger(__name__)

QUIZ_TYPES = ("quick-start", "custom", "study-assignment")
APPROVAL_STATUSES = ("approved", "rejected")
QUICK_START_TITLE = "Quick Start Quiz"
QUICK_START_DESCRIPTION = (
    "Test your Pathfinder Bible Experience knowledge with random questions. "
    "Each question has a time limit and point value based on difficulty."
)


class QuizSessionError(Exception):
    pass


class QuizSessionNotFound(QuizSessionError):
    pass


class QuizSessionForbidden(QuizSessionError):
    pass


# ---------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------
async def get_quiz_session(session: AsyncSession, quiz_session_id) -> Optional[QuizSession]:
    return await session.get(QuizSession, quiz_session_id)


async def get_owned_session(session: AsyncSession, quiz_session_id, user_id) -> QuizSession:
    quiz = await get_quiz_session(session, quiz_session_id)
    if not quiz:
        raise QuizSessionNotFound(f"Quiz session {quiz_session_id} not found")
    if str(quiz.user_id) != str(user_id):
        raise QuizSessionForbidden("Not your quiz session")
    return quiz


async def list_quiz_sessions(session: AsyncSession, user_id, status: Optional[str] = None) -> List[QuizSession]:
    stmt = select(QuizSession).where(QuizSession.user_id == user_id)
    if status:
        stmt = stmt.where(QuizSession.status == status)
    result = await session.execute(stmt.order_by(QuizSession.created_at.desc()))
    return list(result.scalars().all())


async def get_user_profile(session: AsyncSession, user_id) -> Optional[UserProfile]:
    return await session.get(UserProfile, user_id)


async def _active_plan(session: AsyncSession, user_id) -> str:
    result = await session.execute(select(Subscription).where(Subscription.user_id == user_id))
    sub = result.scalar_one_or_none()
    return sub.plan if sub and sub.status == "active" else "free"


async def get_user_tier(session: AsyncSession, user_id) -> str:
    """Plan tier for question access; team members on free inherit the team owner's plan."""
    plan = await _active_plan(session, user_id)
    if plan != "free":
        return plan

    profile = await get_user_profile(session, user_id)
    if profile and profile.team_id:
        team = await session.get(Team, profile.team_id)
        if team and str(team.owner_id) != str(user_id):
            return await _active_plan(session, team.owner_id)
    return plan


async def team_role_for(session: AsyncSession, team_id, user_id) -> Optional[str]:
    """Caller's role in the team (owner via teams.owner_id wins)."""
    if not team_id:
        return None
    team = await session.get(Team, team_id)
    if team and str(team.owner_id) == str(user_id):
        return "owner"
    result = await session.execute(
        select(TeamMember.role).where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
            TeamMember.status == "active",
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------
# Create
# ---------------------------------------------------------------
async def create_quiz_session(
    session: AsyncSession,
    *,
    user_id,
    quiz_type: str,
    questions: List[dict],
    title: str,
    description: str = "",
    team_id=None,
    assignment_id=None,
) -> QuizSession:
    if quiz_type not in QUIZ_TYPES:
        raise ValueError(f"Unknown quiz type '{quiz_type}'")
    if not questions:
        raise ValueError("A quiz needs at least one question")
    if quiz_type == "study-assignment" and not assignment_id:
        raise ValueError("Study assignment quizzes need an assignment_id")

    meta = quiz_metadata(questions)
    quiz = QuizSession(
        id=uuid.uuid4(),
        type=quiz_type,
        title=title,
        description=description or "",
        user_id=user_id,
        team_id=team_id,
        assignment_id=assignment_id,
        questions=questions,
        current_question_index=0,
        results=[],
        status="active",
        show_answer=False,
        time_left=meta["time_left"],
        timer_active=False,
        timer_started=False,
        has_time_expired=False,
        total_points=0,
        max_points=meta["max_points"],
        estimated_minutes=meta["estimated_minutes"],
        total_actual_time_spent_seconds=0,
    )
    session.add(quiz)
    await session.commit()
    logger.info(
        f"🆕 Quiz session {quiz.id} created → type={quiz_type} questions={len(questions)} "
        f"user={mask_sensitive(str(user_id))}"
    )
    return quiz


async def start_quick_start(session: AsyncSession, user_id, team_id=None) -> QuizSession:
    """Resume an unfinished quick-start quiz, or create one from a random sample."""
    result = await session.execute(
        select(QuizSession)
        .where(
            QuizSession.user_id == user_id,
            QuizSession.type == "quick-start",
            QuizSession.status.in_(("active", "paused")),
        )
        .order_by(QuizSession.created_at.desc())
        .limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing:
        logger.info(f"▶️ Resuming quick-start session {existing.id}")
        return existing

    tier = await get_user_tier(session, user_id)
    pool = await load_questions(session, tier=tier)
    picked = pick_quick_start_questions(pool, tier)
    if not picked:
        raise ValueError("No questions available for your subscription tier")

    return await create_quiz_session(
        session,
        user_id=user_id,
        quiz_type="quick-start",
        questions=picked,
        title=QUICK_START_TITLE,
        description=QUICK_START_DESCRIPTION,
        team_id=team_id,
    )


# ---------------------------------------------------------------
# Per-question log
# ---------------------------------------------------------------
async def log_question_result(session: AsyncSession, quiz: QuizSession, user_id, outcome: AnswerOutcome):
    """Write one quiz_question_logs row. Failures are logged, never raised."""
    result = outcome.result
    try:
        async with session.begin_nested():
            session.add(QuizQuestionLog(
                quiz_session_id=quiz.id,
                user_id=user_id,
                question_id=uuid.UUID(result.question_id),
                points_earned=result.points_earned,
                total_points_possible=result.total_points,
                time_spent=result.time_spent,
                answered_at=datetime.fromisoformat(result.answered_at),
                is_correct=outcome.is_correct,
            ))
    except Exception as e:
        logger.warning(f"⚠️ Could not log answer for session {quiz.id}: {e}")


# ---------------------------------------------------------------
# Update (derived totals + completion follow-ups)
# ---------------------------------------------------------------
async def calculate_bonus_xp(session: AsyncSession, quiz: QuizSession, completed_at: datetime) -> int:
    """On-time bonus: completed on the assignment's own (London) day."""
    if not quiz.assignment_id:
        return 0
    try:
        assignment = await session.get(StudyAssignment, quiz.assignment_id)
    except Exception as e:
        logger.warning(f"⚠️ Could not load assignment for bonus XP: {e}")
        return 0
    if not assignment or not assignment.date:
        return 0
    if london_date(completed_at) == parse_db_date(assignment.date):
        return gamification.STUDY_SCHEDULE_BONUS_XP
    return 0


async def update_quiz_session(session: AsyncSession, quiz: QuizSession, updates: dict) -> QuizSession:
    """
    Persist runner updates. Results changes recompute total_points and
    total_actual_time_spent_seconds; completion adds the on-time bonus and
    runs the assignment / stats / achievement follow-ups.
    """
    final = dict(updates)
    if "results" in final:
        summary = summarize_results(final["results"])
        final["total_points"] = summary["total_points_earned"]
        final["total_actual_time_spent_seconds"] = summary["total_time_spent"]

    completing = final.get("status") == "completed" and quiz.status != "completed"
    if completing:
        final.setdefault("completed_at", utcnow())
        final["bonus_xp"] = await calculate_bonus_xp(session, quiz, final["completed_at"])

    for key, value in final.items():
        setattr(quiz, key, value)
    await session.commit()

    if completing:
        logger.info(
            f"🏁 Quiz session {quiz.id} completed → points={quiz.total_points}/{quiz.max_points} "
            f"bonus_xp={quiz.bonus_xp}"
        )
        await _after_completion(session, quiz)
    return quiz


async def _after_completion(session: AsyncSession, quiz: QuizSession):
    if quiz.assignment_id:
        try:
            async with session.begin_nested():
                await assignments.check_and_mark_assignment_completed(session, quiz.assignment_id)
        except Exception as e:
            logger.warning(f"⚠️ Assignment completion check failed for {quiz.assignment_id}: {e}")

    try:
        async with session.begin_nested():
            stats = await gamification.recompute_user_stats(session, quiz.user_id)
    except Exception as e:
        logger.warning(f"⚠️ user_stats recompute failed: {e}")
        stats = None

    if stats is not None:
        try:
            async with session.begin_nested():
                await gamification.unlock_achievements(session, quiz.user_id, stats)
        except Exception as e:
            logger.warning(f"⚠️ Achievement check failed: {e}")

    await session.commit()


# ---------------------------------------------------------------
# Delete
# ---------------------------------------------------------------
async def delete_quiz_session(session: AsyncSession, quiz_session_id, actor_id) -> dict:
    """
    Unfinished sessions: their owner or the team owner may delete.
    Completed sessions: only the team owner, then stats are rebuilt and
    achievements no longer earned are revoked.
    """
    quiz = await get_quiz_session(session, quiz_session_id)
    if not quiz:
        raise QuizSessionNotFound("Quiz session not found")

    actor_is_team_owner = bool(quiz.team_id) and (await team_role_for(session, quiz.team_id, actor_id)) == "owner"

    if quiz.status != "completed":
        if not (str(quiz.user_id) == str(actor_id) or actor_is_team_owner):
            raise QuizSessionForbidden("Not authorized to delete this active session")
        await _delete_rows(session, quiz.id)
        await session.commit()
        logger.info(f"🗑️ Quiz session {quiz.id} deleted (unfinished)")
        return {"success": True, "adjusted": False}

    if not actor_is_team_owner:
        raise QuizSessionForbidden("Only team owners can delete completed sessions")

    owner_id = quiz.user_id
    await _delete_rows(session, quiz.id)
    stats = await gamification.recompute_user_stats(session, owner_id)
    await gamification.revoke_unmet_achievements(session, owner_id, stats)
    await session.commit()
    logger.info(f"🗑️ Completed quiz session {quiz.id} deleted, gamification adjusted")
    return {"success": True, "adjusted": True}


async def _delete_rows(session: AsyncSession, quiz_session_id):
    await session.execute(delete(QuizQuestionLog).where(QuizQuestionLog.quiz_session_id == quiz_session_id))
    await session.execute(delete(QuizSession).where(QuizSession.id == quiz_session_id))


# ---------------------------------------------------------------
# Approval
# ---------------------------------------------------------------
async def set_approval_status(session: AsyncSession, quiz_session_id, status: str, actor_id) -> QuizSession:
    if status not in APPROVAL_STATUSES:
        raise ValueError(f"Approval status must be one of {', '.join(APPROVAL_STATUSES)}")

    quiz = await get_quiz_session(session, quiz_session_id)
    if not quiz:
        raise QuizSessionNotFound("Quiz session not found")
    role = await team_role_for(session, quiz.team_id, actor_id)
    if role not in ("owner", "admin"):
        raise QuizSessionForbidden("Only team owners and admins can review quizzes")

    await session.execute(
        update(QuizSession)
        .where(QuizSession.id == quiz.id)
        .values(approval_status=status, updated_at=utcnow())
    )
    await session.commit()
    quiz.approval_status = status
    logger.info(f"✅ Quiz session {quiz.id} marked {status}")
    return quiz
