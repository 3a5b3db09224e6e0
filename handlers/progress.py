# ==============================================================
# handlers/progress.py — Question catalogue + personal progress
# ==============================================================
import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from services import gamification, quiz_sessions
from services.questions import (
    count_questions_for_study_items,
    format_number_ranges,
    format_study_items,
    format_total_time,
    get_available_books,
    get_chapters_for_book,
    get_verses_for_chapter,
    load_questions,
)
from utils.security import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["progress"])


class StudyItemQuery(BaseModel):
    book: str
    chapters: List[int]
    verses: Optional[List[int]] = None


class StudyItemsCount(BaseModel):
    study_items: List[StudyItemQuery]


# -------------------------------------------------
# Catalogue (what the custom quiz builder can pick)
# -------------------------------------------------
@router.get("/questions/catalog")
async def question_catalog(
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    tier = await quiz_sessions.get_user_tier(session, uuid.UUID(user.id))
    questions = await load_questions(session, tier=tier)

    books = []
    for book in get_available_books(questions):
        chapters = []
        for chapter in get_chapters_for_book(book, questions):
            verses = get_verses_for_chapter(book, chapter, questions)
            chapters.append({"chapter": chapter, "verses": verses, "verse_label": format_number_ranges(verses)})
        books.append({
            "book": book,
            "chapters": chapters,
            "chapter_label": format_number_ranges(c["chapter"] for c in chapters),
        })
    return {"tier": tier, "question_count": len(questions), "books": books}


@router.post("/questions/count")
async def count_for_study_items(
    body: StudyItemsCount,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    tier = await quiz_sessions.get_user_tier(session, uuid.UUID(user.id))
    items = [i.model_dump() for i in body.study_items]
    questions = await load_questions(session, tier=tier)
    return {
        "label": format_study_items(items),
        "count": count_questions_for_study_items(questions, items, tier),
    }


# -------------------------------------------------
# Progress
# -------------------------------------------------
@router.get("/progress")
async def my_progress(
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    progress = await gamification.get_progress(session, uuid.UUID(user.id))
    progress["total_study_time"] = format_total_time(progress["total_study_minutes"])
    return progress
