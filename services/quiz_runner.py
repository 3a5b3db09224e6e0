# ===============================================================
# services/quiz_runner.py
# ===============================================================
"""
Quiz session runner.

One persisted quiz session is driven question by question. The runner
holds the session's runner columns (`show_answer`, `time_left`,
`timer_active`, `timer_started`, `has_time_expired`,
`current_question_index`, `results`) and every operation returns the
dict of column updates to persist, after applying it to its own state.

Timer flow for a question:

    show_question -> start_timer -> tick ... -> (expired) -> show_answer
                                             -> stop_timer

Answer flow: mark_correct / mark_incorrect / award_partial append a
result, then either advance to the next question (timer reset to that
question's time_to_answer) or complete the session.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

DEFAULT_TIME_TO_ANSWER = 30
MAX_TIME_SPENT_SECONDS = 86400

RUNNER_FIELDS = (
    "questions", "current_question_index", "results", "status",
    "show_answer", "time_left", "timer_active", "timer_started", "has_time_expired",
    "total_points", "completed_at",
)


# ---------------------------------------------------------------
# Errors
# ---------------------------------------------------------------
class QuizRunnerError(Exception):
    """Base for invalid runner transitions."""


class QuizSessionCompleted(QuizRunnerError):
    pass


class PartialPointsRequired(QuizRunnerError):
    """Incorrect answer on a multi-point question: an award must be chosen."""

    def __init__(self, max_points: int):
        super().__init__(f"Question is worth {max_points} points; choose a partial award")
        self.max_points = max_points


class InvalidPartialPoints(QuizRunnerError):
    pass


class NoCurrentQuestion(QuizRunnerError):
    pass


# ---------------------------------------------------------------
# Results
# ---------------------------------------------------------------
@dataclass
class QuizResult:
    question_id: str
    points_earned: int
    total_points: int
    time_spent: int
    answered_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_full_marks(self) -> bool:
        return self.points_earned == self.total_points

    def to_json(self) -> dict:
        # keys shared with the browser client
        return {
            "questionId": self.question_id,
            "pointsEarned": self.points_earned,
            "totalPoints": self.total_points,
            "timeSpent": self.time_spent,
            "answeredAt": self.answered_at,
        }

    @classmethod
    def from_json(cls, data: dict) -> "QuizResult":
        return cls(
            question_id=str(data.get("questionId")),
            points_earned=int(data.get("pointsEarned") or 0),
            total_points=int(data.get("totalPoints") or 0),
            time_spent=int(data.get("timeSpent") or 0),
            answered_at=data.get("answeredAt") or "",
        )


@dataclass
class AnswerOutcome:
    """What an answer did: the column updates, the result, and the log flag."""
    updates: dict
    result: QuizResult
    is_correct: bool
    completed: bool


def normalize_time_spent(raw_seconds: Optional[float]) -> int:
    """Whole seconds capped at a day; anything under a second but above zero counts as 1."""
    if raw_seconds is None or not math.isfinite(raw_seconds) or raw_seconds <= 0:
        return 0
    if raw_seconds < 1:
        return 1
    return min(math.floor(raw_seconds), MAX_TIME_SPENT_SECONDS)


def summarize_results(results: List[dict]) -> dict:
    """Totals over stored result dicts (JSON keys)."""
    parsed = [QuizResult.from_json(r) for r in results or []]
    count = len(parsed)
    correct = sum(1 for r in parsed if r.is_full_marks)
    return {
        "total_points_earned": sum(r.points_earned for r in parsed),
        "total_possible_points": sum(r.total_points for r in parsed),
        "correct_answers": correct,
        "total_questions": count,
        "accuracy": round(correct / count * 100) if count else 0,
        "average_time": round(sum(r.time_spent for r in parsed) / count) if count else 0,
        "total_time_spent": sum(r.time_spent for r in parsed),
    }


# ---------------------------------------------------------------
# Runner
# ---------------------------------------------------------------
class QuizRunner:
    def __init__(self, state: dict):
        self.state = {
            "questions": list(state.get("questions") or []),
            "current_question_index": int(state.get("current_question_index") or 0),
            "results": list(state.get("results") or []),
            "status": state.get("status") or "active",
            "show_answer": bool(state.get("show_answer")),
            "time_left": int(state["time_left"]) if state.get("time_left") is not None else DEFAULT_TIME_TO_ANSWER,
            "timer_active": bool(state.get("timer_active")),
            "timer_started": bool(state.get("timer_started")),
            "has_time_expired": bool(state.get("has_time_expired")),
            "total_points": int(state.get("total_points") or 0),
            "completed_at": state.get("completed_at"),
        }

    @classmethod
    def from_session(cls, session) -> "QuizRunner":
        return cls({name: getattr(session, name, None) for name in RUNNER_FIELDS})

    # ---- helpers ----------------------------------------------
    @property
    def is_completed(self) -> bool:
        return self.state["status"] == "completed"

    @property
    def current_question(self) -> Optional[dict]:
        questions = self.state["questions"]
        idx = self.state["current_question_index"]
        if 0 <= idx < len(questions):
            return questions[idx]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.state["current_question_index"] >= len(self.state["questions"]) - 1

    def _apply(self, updates: dict) -> dict:
        self.state.update(updates)
        return updates

    def _ensure_open(self):
        if self.is_completed:
            raise QuizSessionCompleted("Quiz session is already completed")

    def _require_question(self) -> dict:
        self._ensure_open()
        question = self.current_question
        if question is None:
            raise NoCurrentQuestion("Quiz session has no current question")
        return question

    @staticmethod
    def _time_to_answer(question: Optional[dict]) -> int:
        return int((question or {}).get("time_to_answer") or DEFAULT_TIME_TO_ANSWER)

    def _timer_reset(self, question: Optional[dict]) -> dict:
        return {
            "show_answer": False,
            "time_left": self._time_to_answer(question),
            "timer_active": False,
            "timer_started": False,
            "has_time_expired": False,
        }

    def elapsed_on_timer(self) -> int:
        """Seconds the countdown has run for the current question."""
        if not self.state["timer_started"]:
            return 0
        return max(0, self._time_to_answer(self.current_question) - self.state["time_left"])

    # ---- timer ------------------------------------------------
    def start_timer(self) -> dict:
        self._require_question()
        if self.state["timer_started"] or self.state["has_time_expired"]:
            return {}
        return self._apply({"timer_active": True, "timer_started": True})

    def tick(self) -> dict:
        """One second elapsed. No-op unless the timer is running."""
        self._ensure_open()
        if not self.state["timer_active"]:
            return {}
        remaining = self.state["time_left"] - 1
        updates = {"time_left": max(0, remaining)}
        if remaining <= 0:
            updates.update({"timer_active": False, "has_time_expired": True})
        return self._apply(updates)

    def stop_timer(self) -> dict:
        self._ensure_open()
        return self._apply({"timer_active": False})

    # ---- question / answer view --------------------------------
    def show_answer(self) -> dict:
        self._require_question()
        return self._apply({"show_answer": True, "timer_active": False, "has_time_expired": False})

    def show_question(self) -> dict:
        question = self._require_question()
        return self._apply(self._timer_reset(question))

    # ---- answers ----------------------------------------------
    def mark_correct(self, time_spent: Optional[float] = None, now: Optional[datetime] = None) -> AnswerOutcome:
        question = self._require_question()
        points = int(question.get("points") or 0)
        return self._record(question, points, points, time_spent, True, now)

    def mark_incorrect(self, time_spent: Optional[float] = None, now: Optional[datetime] = None) -> AnswerOutcome:
        question = self._require_question()
        points = int(question.get("points") or 0)
        if points > 1:
            raise PartialPointsRequired(points)
        return self._record(question, 0, points, time_spent, False, now)

    def award_partial(self, awarded: int, time_spent: Optional[float] = None,
                      now: Optional[datetime] = None) -> AnswerOutcome:
        question = self._require_question()
        points = int(question.get("points") or 0)
        if awarded < 0 or awarded > points:
            raise InvalidPartialPoints(f"Partial award must be between 0 and {points}")
        # logged as not correct even at full marks
        return self._record(question, int(awarded), points, time_spent, False, now)

    def _record(self, question: dict, earned: int, total: int, time_spent: Optional[float],
                is_correct: bool, now: Optional[datetime]) -> AnswerOutcome:
        now = now or datetime.now(timezone.utc)
        if time_spent is None:
            time_spent = self.elapsed_on_timer()

        result = QuizResult(
            question_id=str(question.get("id")),
            points_earned=earned,
            total_points=total,
            time_spent=normalize_time_spent(time_spent),
            answered_at=now.isoformat(),
        )
        results = self.state["results"] + [result.to_json()]

        if self.is_last_question:
            updates = {
                "results": results,
                "status": "completed",
                "completed_at": now,
                "timer_active": False,
                "total_points": sum(int(r.get("pointsEarned") or 0) for r in results),
            }
            return AnswerOutcome(self._apply(updates), result, is_correct, True)

        next_index = self.state["current_question_index"] + 1
        updates = {"results": results, "current_question_index": next_index}
        updates.update(self._timer_reset(self.state["questions"][next_index]))
        return AnswerOutcome(self._apply(updates), result, is_correct, False)

    # ---- stats ------------------------------------------------
    def stats(self) -> dict:
        summary = summarize_results(self.state["results"])
        summary.pop("total_time_spent")
        return summary

    def snapshot(self) -> dict:
        """Client view: runner state plus the current question."""
        view = {k: v for k, v in self.state.items() if k != "questions"}
        if isinstance(view.get("completed_at"), datetime):
            view["completed_at"] = view["completed_at"].isoformat()
        view["question_count"] = len(self.state["questions"])
        view["current_question"] = None if self.is_completed else self.current_question
        return view
