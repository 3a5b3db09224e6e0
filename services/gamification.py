# ===============================================================
# services/gamification.py
# ===============================================================
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from models import QuizSession, UserStats, Achievement, UserAchievement
from utils.dates import london_date, london_today

logger = logging.getLogger(__name__)

XP_PER_LEVEL = 500
STUDY_SCHEDULE_BONUS_XP = 10

CRITERIA_TYPES = ("total_quizzes_completed", "total_points_earned", "longest_streak")


# ---------------------------------------------------------------
# Levels
# ---------------------------------------------------------------
def calculate_level(total_xp: int) -> int:
    return max(1, total_xp // XP_PER_LEVEL + 1)


def calculate_xp_progress(total_xp: int, current_level: int) -> dict:
    level_floor = (current_level - 1) * XP_PER_LEVEL
    next_level = current_level * XP_PER_LEVEL
    in_level = total_xp - level_floor
    return {
        "current": in_level,
        "needed": next_level - total_xp,
        "percentage": min(in_level / XP_PER_LEVEL * 100, 100),
    }


# ---------------------------------------------------------------
# Streaks (London calendar days)
# ---------------------------------------------------------------
def study_days(completed_ats: Iterable[Optional[datetime]]) -> List[date]:
    return sorted({london_date(ts) for ts in completed_ats if ts is not None})


def calculate_current_streak(completed_ats: Iterable[Optional[datetime]],
                             today: Optional[date] = None) -> int:
    """Consecutive study days ending today, or yesterday if nothing yet today."""
    days = study_days(completed_ats)
    if not days:
        return 0

    today = today or london_today()
    yesterday = today - timedelta(days=1)
    most_recent = days[-1]
    if most_recent == today:
        expected = today
    elif most_recent == yesterday:
        expected = yesterday
    else:
        return 0

    streak = 0
    for day in reversed(days):
        if day != expected:
            break
        streak += 1
        expected -= timedelta(days=1)
    return streak


def calculate_longest_streak(completed_ats: Iterable[Optional[datetime]]) -> int:
    days = study_days(completed_ats)
    if not days:
        return 0

    longest = run = 1
    for prev, cur in zip(days, days[1:]):
        if cur - prev == timedelta(days=1):
            run += 1
            longest = max(longest, run)
        else:
            run = 1
    return longest


# ---------------------------------------------------------------
# Stats & achievements
# ---------------------------------------------------------------
def compute_user_stats(completed: List[dict], today: Optional[date] = None) -> dict:
    """
    `completed` rows carry total_points, bonus_xp and completed_at of every
    completed session of one user.
    """
    total_xp = sum(int(s.get("total_points") or 0) + int(s.get("bonus_xp") or 0) for s in completed)
    completed_ats = [s.get("completed_at") for s in completed]
    days = study_days(completed_ats)
    return {
        "total_xp": total_xp,
        "current_level": calculate_level(total_xp),
        "longest_streak": calculate_longest_streak(completed_ats),
        "current_streak": calculate_current_streak(completed_ats, today=today),
        "total_quizzes_completed": len(completed),
        "last_quiz_date": days[-1] if days else (today or london_today()),
    }


def criteria_met(criteria_type: str, criteria_value: int, stats: dict) -> bool:
    if criteria_type == "total_quizzes_completed":
        return stats["total_quizzes_completed"] >= criteria_value
    if criteria_type == "total_points_earned":
        return stats["total_xp"] >= criteria_value
    if criteria_type == "longest_streak":
        return stats["longest_streak"] >= criteria_value
    return False


async def _load_completed_sessions(session: AsyncSession, user_id) -> List[dict]:
    result = await session.execute(
        select(
            QuizSession.total_points, QuizSession.bonus_xp, QuizSession.completed_at,
            QuizSession.total_actual_time_spent_seconds,
        )
        .where(QuizSession.user_id == user_id, QuizSession.status == "completed")
    )
    return [dict(row._mapping) for row in result.all()]


async def _upsert_user_stats(session: AsyncSession, user_id, stats: dict):
    values = {
        "user_id": user_id,
        "total_xp": stats["total_xp"],
        "current_level": stats["current_level"],
        "longest_streak": stats["longest_streak"],
        "last_quiz_date": stats["last_quiz_date"],
    }
    stmt = insert(UserStats).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserStats.user_id],
        set_={k: stmt.excluded[k] for k in values if k != "user_id"},
    )
    await session.execute(stmt)


async def recompute_user_stats(session: AsyncSession, user_id) -> dict:
    """Rebuild user_stats from every completed session. Caller commits."""
    completed = await _load_completed_sessions(session, user_id)
    stats = compute_user_stats(completed)
    await _upsert_user_stats(session, user_id, stats)
    logger.info(
        f"📈 user_stats recomputed → xp={stats['total_xp']} level={stats['current_level']} "
        f"longest_streak={stats['longest_streak']}"
    )
    return stats


async def get_progress(session: AsyncSession, user_id, today: Optional[date] = None) -> dict:
    """Dashboard view: level, XP progress, streaks and total study time."""
    completed = await _load_completed_sessions(session, user_id)
    stats = compute_user_stats(completed, today=today)
    seconds = sum(int(s.get("total_actual_time_spent_seconds") or 0) for s in completed)
    return {
        **stats,
        "last_quiz_date": stats["last_quiz_date"].isoformat() if completed else None,
        "xp_progress": calculate_xp_progress(stats["total_xp"], stats["current_level"]),
        "total_study_minutes": seconds // 60,
    }


async def unlock_achievements(session: AsyncSession, user_id, stats: dict) -> List[str]:
    """Grant every achievement whose criteria the stats now meet. Returns names unlocked."""
    achievements = (await session.execute(select(Achievement))).scalars().all()
    owned = set((await session.execute(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
    )).scalars().all())

    unlocked = []
    for achievement in achievements:
        if achievement.id in owned:
            continue
        if not criteria_met(achievement.criteria_type, achievement.criteria_value, stats):
            continue
        stmt = insert(UserAchievement).values(user_id=user_id, achievement_id=achievement.id)
        await session.execute(stmt.on_conflict_do_nothing(index_elements=["user_id", "achievement_id"]))
        unlocked.append(achievement.name)

    if unlocked:
        logger.info(f"🏆 Achievements unlocked: {', '.join(unlocked)}")
    return unlocked


async def revoke_unmet_achievements(session: AsyncSession, user_id, stats: dict) -> int:
    achievements = (await session.execute(select(Achievement))).scalars().all()
    failing = [
        a.id for a in achievements
        if a.criteria_type in CRITERIA_TYPES
        and not criteria_met(a.criteria_type, a.criteria_value, stats)
    ]
    if not failing:
        return 0

    result = await session.execute(
        delete(UserAchievement).where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id.in_(failing),
        )
    )
    if result.rowcount:
        logger.info(f"↩️ Revoked {result.rowcount} achievement(s) no longer met")
    return result.rowcount or 0
