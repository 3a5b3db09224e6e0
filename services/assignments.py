# ===============================================================
# services/assignments.py
# ===============================================================
import logging
from typing import Iterable, List, Set

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpers import utcnow
from models import StudyAssignment, QuizSession

logger = logging.getLogger(__name__)


def required_chapters(study_items: List[dict]) -> Set[str]:
    """'Book:chapter' keys an assignment asks for."""
    return {
        f"{item['book']}:{chapter}"
        for item in study_items or []
        for chapter in item.get("chapters") or []
    }


def covered_chapters(question_lists: Iterable[List[dict]]) -> Set[str]:
    covered = set()
    for questions in question_lists:
        for q in questions or []:
            if q.get("book_of_bible") and q.get("chapter"):
                covered.add(f"{q['book_of_bible']}:{q['chapter']}")
    return covered


async def check_and_mark_assignment_completed(session: AsyncSession, assignment_id) -> bool:
    """
    Mark the assignment completed once completed quiz sessions linked to it
    cover every required chapter. Returns True when it is (now) completed.
    Caller commits.
    """
    assignment = await session.get(StudyAssignment, assignment_id)
    if not assignment:
        logger.warning(f"⚠️ Assignment {assignment_id} not found for completion check")
        return False
    if assignment.completed:
        return True

    result = await session.execute(
        select(QuizSession.questions).where(
            QuizSession.assignment_id == assignment_id,
            QuizSession.status == "completed",
        )
    )
    question_lists = result.scalars().all()
    if not question_lists:
        return False

    required = required_chapters(assignment.study_items)
    covered = covered_chapters(question_lists)
    if not required.issubset(covered):
        logger.info(f"📊 Assignment {assignment_id}: {len(required & covered)}/{len(required)} chapters covered")
        return False

    now = utcnow()
    await session.execute(
        update(StudyAssignment)
        .where(StudyAssignment.id == assignment_id)
        .values(completed=True, completed_at=now, updated_at=now)
    )
    logger.info(f"🎉 Assignment {assignment_id} marked completed")
    return True
