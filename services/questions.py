# ===============================================================
# services/questions.py
# ===============================================================
import logging
import math
import random
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Question

logger = logging.getLogger(__name__)

TIER_HIERARCHY = {"free": 0, "pro": 1, "enterprise": 2}
QUICK_START_MAX_QUESTIONS = 90
DEFAULT_TIME_TO_ANSWER = 30

QUIZ_TYPE_NAMES = {
    "quick-start": "Quick Start",
    "custom": "Custom Quiz",
    "study-assignment": "Study Assignment",
}


# ---------------------------------------------------------------
# Tier access
# ---------------------------------------------------------------
def accessible_tiers(user_tier: str) -> List[str]:
    level = TIER_HIERARCHY.get(user_tier, 0)
    return [tier for tier, lvl in TIER_HIERARCHY.items() if lvl <= level]


def get_accessible_questions(questions: List[dict], user_tier: str = "free") -> List[dict]:
    """Questions whose tier is at or below the user's plan tier."""
    level = TIER_HIERARCHY.get(user_tier, 0)
    return [q for q in questions if TIER_HIERARCHY.get(q.get("tier", "free"), 0) <= level]


# ---------------------------------------------------------------
# Study item filtering
# ---------------------------------------------------------------
def filter_questions_by_study_items(questions: List[dict], study_items: List[dict]) -> List[dict]:
    """
    Keep questions matching any study item's book + chapters (+ verses when
    given). A question without a verse counts as verse 1. Order follows the
    study items; a question matched twice is kept once.
    """
    if not questions or not study_items:
        return []

    matched = []
    seen = set()
    for item in study_items:
        book = item.get("book")
        verses = item.get("verses") or []
        for chapter in item.get("chapters") or []:
            for q in questions:
                if q.get("book_of_bible") != book or q.get("chapter") != chapter:
                    continue
                if verses and (q.get("verse") or 1) not in verses:
                    continue
                if q["id"] in seen:
                    continue
                seen.add(q["id"])
                matched.append(q)
    return matched


def order_by_ids(questions: List[dict], ids: Iterable) -> List[dict]:
    """Questions in the order of `ids`; unknown or inaccessible ids are dropped."""
    by_id = {q["id"]: q for q in questions}
    return [by_id[str(i)] for i in ids if str(i) in by_id]


def get_chapters_for_book(book: str, questions: Iterable[dict]) -> List[int]:
    return sorted({q["chapter"] for q in questions if q.get("book_of_bible") == book})


def get_verses_for_chapter(book: str, chapter: int, questions: Iterable[dict]) -> List[int]:
    return sorted({
        q.get("verse") or 1
        for q in questions
        if q.get("book_of_bible") == book and q.get("chapter") == chapter
    })


def get_available_books(questions: Iterable[dict]) -> List[str]:
    return sorted({q["book_of_bible"] for q in questions})


def count_questions_for_study_items(questions: List[dict], study_items: List[dict], user_tier: str = "free") -> int:
    return len(get_accessible_questions(filter_questions_by_study_items(questions, study_items), user_tier))


# ---------------------------------------------------------------
# Display formatting
# ---------------------------------------------------------------
def format_number_ranges(numbers: Iterable[int]) -> str:
    """[1, 2, 3, 5, 7, 8, 9, 10] -> '1-3, 5, 7-10'"""
    ordered = sorted(numbers)
    if not ordered:
        return ""

    ranges = []
    start = end = ordered[0]
    for n in ordered[1:]:
        if n == end + 1:
            end = n
            continue
        ranges.append(str(start) if start == end else f"{start}-{end}")
        start = end = n
    ranges.append(str(start) if start == end else f"{start}-{end}")
    return ", ".join(ranges)


def format_study_items(study_items: List[dict]) -> str:
    parts = []
    for item in study_items or []:
        book = item["book"]
        chapters = item.get("chapters") or []
        verses = item.get("verses") or []
        if verses:
            verse_ranges = format_number_ranges(verses)
            if len(chapters) == 1:
                parts.append(f"{book} {chapters[0]}:{verse_ranges}")
            else:
                parts.append(f"{book} (Ch. {format_number_ranges(chapters)}, Verses: {verse_ranges})")
        elif len(chapters) == 1:
            parts.append(f"{book} {chapters[0]}")
        else:
            parts.append(f"{book} (Ch. {format_number_ranges(chapters)})")
    return ", ".join(parts)


def quiz_type_display_name(quiz_type: str) -> str:
    return QUIZ_TYPE_NAMES.get(quiz_type, "Quiz")


def format_total_time(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}m"
    hours, rest = divmod(minutes, 60)
    return f"{hours}h" if rest == 0 else f"{hours}h {rest}m"


# ---------------------------------------------------------------
# Quiz metadata
# ---------------------------------------------------------------
def quiz_metadata(questions: List[dict]) -> dict:
    """max_points, estimated_minutes and the first question's timer."""
    seconds = sum(q.get("time_to_answer") or DEFAULT_TIME_TO_ANSWER for q in questions)
    return {
        "max_points": sum(q.get("points") or 0 for q in questions),
        "estimated_minutes": math.ceil(seconds / 60),
        "time_left": (questions[0].get("time_to_answer") or DEFAULT_TIME_TO_ANSWER) if questions else DEFAULT_TIME_TO_ANSWER,
    }


def pick_quick_start_questions(questions: List[dict], user_tier: str = "free",
                               limit: int = QUICK_START_MAX_QUESTIONS,
                               rng: Optional[random.Random] = None) -> List[dict]:
    pool = get_accessible_questions(questions, user_tier)
    rng = rng or random
    return rng.sample(pool, min(limit, len(pool)))


# ---------------------------------------------------------------
# DB access
# ---------------------------------------------------------------
async def load_questions(session: AsyncSession, *, tier: str = "free",
                         ids: Optional[List[str]] = None) -> List[dict]:
    stmt = select(Question).where(Question.tier.in_(accessible_tiers(tier)))
    if ids:
        stmt = stmt.where(Question.id.in_(ids))
    result = await session.execute(stmt.order_by(Question.book_of_bible, Question.chapter, Question.verse))
    return [q.to_dict() for q in result.scalars().all()]
