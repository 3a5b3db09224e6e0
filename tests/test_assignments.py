from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.assignments import (
    check_and_mark_assignment_completed,
    covered_chapters,
    required_chapters,
)


def _scalars_result(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


def _session(assignment, question_lists):
    session = MagicMock()
    session.get = AsyncMock(return_value=assignment)
    session.execute = AsyncMock(side_effect=[_scalars_result(question_lists), MagicMock()])
    return session


def test_required_and_covered_chapters():
    items = [{"book": "Ruth", "chapters": [1, 2]}, {"book": "Esther", "chapters": [4]}]
    assert required_chapters(items) == {"Ruth:1", "Ruth:2", "Esther:4"}
    covered = covered_chapters([
        [{"book_of_bible": "Ruth", "chapter": 1}],
        [{"book_of_bible": "Ruth", "chapter": 2}, {"book_of_bible": "Esther", "chapter": 4}],
        None,
    ])
    assert covered == {"Ruth:1", "Ruth:2", "Esther:4"}


@pytest.mark.asyncio
async def test_assignment_completed_when_all_chapters_covered():
    assignment = SimpleNamespace(completed=False, study_items=[{"book": "Ruth", "chapters": [1, 2]}])
    session = _session(assignment, [
        [{"book_of_bible": "Ruth", "chapter": 1}],
        [{"book_of_bible": "Ruth", "chapter": 2}],
    ])

    assert await check_and_mark_assignment_completed(session, "a-1") is True
    assert session.execute.await_count == 2


@pytest.mark.asyncio
async def test_assignment_not_completed_with_gaps():
    assignment = SimpleNamespace(completed=False, study_items=[{"book": "Ruth", "chapters": [1, 2]}])
    session = _session(assignment, [[{"book_of_bible": "Ruth", "chapter": 1}]])

    assert await check_and_mark_assignment_completed(session, "a-1") is False
    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_missing_or_already_completed_assignment():
    session = _session(None, [])
    assert await check_and_mark_assignment_completed(session, "a-1") is False

    done = SimpleNamespace(completed=True, study_items=[])
    session = _session(done, [])
    assert await check_and_mark_assignment_completed(session, "a-1") is True
    session.execute.assert_not_awaited()
