from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from services import gamification
from services.gamification import (
    calculate_current_streak,
    calculate_level,
    calculate_longest_streak,
    calculate_xp_progress,
    compute_user_stats,
    criteria_met,
)
from utils.dates import london_date


def _utc(y, m, d, h=12):
    return datetime(y, m, d, h, tzinfo=timezone.utc)


def test_level_boundaries():
    assert calculate_level(0) == 1
    assert calculate_level(499) == 1
    assert calculate_level(500) == 2
    assert calculate_level(1250) == 3


def test_xp_progress_inside_level():
    progress = calculate_xp_progress(750, 2)
    assert progress == {"current": 250, "needed": 250, "percentage": 50.0}


def test_london_day_rolls_over_in_summer():
    # 23:30 UTC in July is already the next day in London (BST)
    assert london_date(_utc(2025, 7, 1, 23).replace(minute=30)) == date(2025, 7, 2)
    # winter: GMT, same day
    assert london_date(_utc(2025, 1, 1, 23)) == date(2025, 1, 1)


def test_current_streak_counts_back_from_today():
    today = date(2025, 3, 10)
    stamps = [_utc(2025, 3, 10), _utc(2025, 3, 9), _utc(2025, 3, 9, 8), _utc(2025, 3, 8), _utc(2025, 3, 5)]
    assert calculate_current_streak(stamps, today=today) == 3


def test_current_streak_allows_yesterday_as_latest():
    today = date(2025, 3, 10)
    assert calculate_current_streak([_utc(2025, 3, 9), _utc(2025, 3, 8)], today=today) == 2


def test_current_streak_broken():
    today = date(2025, 3, 10)
    assert calculate_current_streak([_utc(2025, 3, 7)], today=today) == 0
    assert calculate_current_streak([], today=today) == 0


def test_longest_streak():
    stamps = [
        _utc(2025, 1, 1), _utc(2025, 1, 2), _utc(2025, 1, 3),
        _utc(2025, 1, 10), _utc(2025, 1, 11),
        None,
    ]
    assert calculate_longest_streak(stamps) == 3
    assert calculate_longest_streak([_utc(2025, 1, 1)]) == 1
    assert calculate_longest_streak([]) == 0


def test_compute_user_stats_includes_bonus_xp():
    completed = [
        {"total_points": 40, "bonus_xp": 10, "completed_at": _utc(2025, 3, 9)},
        {"total_points": 460, "bonus_xp": 0, "completed_at": _utc(2025, 3, 10)},
    ]
    stats = compute_user_stats(completed, today=date(2025, 3, 10))
    assert stats["total_xp"] == 510
    assert stats["current_level"] == 2
    assert stats["longest_streak"] == 2
    assert stats["current_streak"] == 2
    assert stats["total_quizzes_completed"] == 2
    assert stats["last_quiz_date"] == date(2025, 3, 10)


def test_compute_user_stats_empty_history():
    stats = compute_user_stats([], today=date(2025, 3, 10))
    assert stats["total_xp"] == 0
    assert stats["current_level"] == 1
    assert stats["last_quiz_date"] == date(2025, 3, 10)


def test_criteria_met():
    stats = {"total_quizzes_completed": 5, "total_xp": 900, "longest_streak": 3}
    assert criteria_met("total_quizzes_completed", 5, stats)
    assert not criteria_met("total_points_earned", 1000, stats)
    assert criteria_met("longest_streak", 3, stats)
    assert not criteria_met("unknown", 0, stats)


@pytest.mark.asyncio
async def test_recompute_user_stats_upserts(monkeypatch):
    captured = {}

    async def fake_load(session, user_id):
        return [{"total_points": 120, "bonus_xp": 10, "completed_at": _utc(2025, 3, 9)}]

    async def fake_upsert(session, user_id, stats):
        captured["user_id"] = user_id
        captured["stats"] = stats

    monkeypatch.setattr(gamification, "_load_completed_sessions", fake_load)
    monkeypatch.setattr(gamification, "_upsert_user_stats", fake_upsert)

    stats = await gamification.recompute_user_stats(object(), "user-1")
    assert stats["total_xp"] == 130
    assert captured["user_id"] == "user-1"
    assert captured["stats"]["current_level"] == 1


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------

ACHIEVEMENTS = [
    SimpleNamespace(id=1, name="First Steps", criteria_type="total_quizzes_completed", criteria_value=1),
    SimpleNamespace(id=2, name="Scholar", criteria_type="total_points_earned", criteria_value=1000),
    SimpleNamespace(id=3, name="Faithful", criteria_type="longest_streak", criteria_value=3),
]

STATS = {"total_quizzes_completed": 2, "total_xp": 100, "longest_streak": 5}


def _scalars(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


@pytest.mark.asyncio
async def test_unlock_achievements_skips_owned_and_unmet():
    session = MagicMock()
    session.execute = AsyncMock(side_effect=[_scalars(ACHIEVEMENTS), _scalars([3]), MagicMock()])

    unlocked = await gamification.unlock_achievements(session, "user-1", STATS)

    assert unlocked == ["First Steps"]
    assert session.execute.await_count == 3


@pytest.mark.asyncio
async def test_revoke_unmet_achievements_deletes_failing_only():
    deleted = MagicMock(rowcount=1)
    session = MagicMock()
    session.execute = AsyncMock(side_effect=[_scalars(ACHIEVEMENTS), deleted])

    assert await gamification.revoke_unmet_achievements(session, "user-1", STATS) == 1
    assert session.execute.await_count == 2


@pytest.mark.asyncio
async def test_revoke_nothing_when_all_criteria_hold():
    session = MagicMock()
    session.execute = AsyncMock(side_effect=[_scalars(ACHIEVEMENTS)])
    stats = {"total_quizzes_completed": 5, "total_xp": 5000, "longest_streak": 9}

    assert await gamification.revoke_unmet_achievements(session, "user-1", stats) == 0
    assert session.execute.await_count == 1
