"""
HTTP-level tests: the app is exercised through TestClient with the auth,
database and API rate-limit dependencies overridden. Startup events are
not run, so no background loops or database connections are opened.
"""
import json
import time
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app import app
from db import get_session
from handlers import email as email_handler
from handlers import quiz as quiz_handler
from handlers import teams as teams_handler
from services import payments, quiz_sessions
from services.rate_limit import RateLimiter, enforce_api_rate_limit
from utils.permissions import Actor
from utils.security import get_current_user


@pytest.fixture
def db_session():
    return MagicMock(commit=AsyncMock(), rollback=AsyncMock(), execute=AsyncMock(), get=AsyncMock())


@pytest.fixture
def client(fake_user, db_session):
    async def _session():
        yield db_session

    app.dependency_overrides[get_current_user] = lambda: fake_user
    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[enforce_api_rate_limit] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


def _quiz(user_id, *questions, **overrides):
    q = SimpleNamespace(
        id=uuid.uuid4(), user_id=user_id, type="custom", title="Ruth", description="",
        team_id=None, assignment_id=None, max_points=sum(x["points"] for x in questions),
        estimated_minutes=1, bonus_xp=0, total_actual_time_spent_seconds=0, approval_status=None,
        questions=list(questions), current_question_index=0, results=[], status="active",
        show_answer=False, time_left=questions[0]["time_to_answer"], timer_active=False,
        timer_started=False, has_time_expired=False, total_points=0, completed_at=None,
    )
    for k, v in overrides.items():
        setattr(q, k, v)
    return q


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------

def test_root(client):
    assert client.get("/").json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Stripe webhook
# ---------------------------------------------------------------------------

def test_webhook_requires_signature(client):
    resp = client.post("/stripe/webhook", content=b"{}")
    assert resp.status_code == 400
    assert resp.json() == {"error": "No signature found"}


def test_webhook_rejects_bad_signature(client):
    resp = client.post("/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=deadbeef"})
    assert resp.status_code == 400
    assert "Webhook signature verification failed" in resp.json()["error"]


def test_webhook_accepts_and_defers_processing(client, monkeypatch):
    processed = []

    async def fake_process(event):
        processed.append(event)

    monkeypatch.setattr(payments, "process_event_safely", fake_process)

    event = {"id": "evt_1", "type": "customer.subscription.updated", "data": {"object": {"customer": "cus_1"}}}
    body = json.dumps(event).encode()
    ts = int(time.time())
    sig = payments.compute_signature(body, ts, payments.STRIPE_WEBHOOK_SECRET)

    resp = client.post("/stripe/webhook", content=body, headers={"stripe-signature": f"t={ts},v1={sig}"})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert processed == [event]


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

def test_subscription_action_validation(client):
    assert client.post("/api/billing/subscription", json={"action": "cancel"}).status_code == 400
    resp = client.post("/api/billing/subscription", json={"action": "pause", "subscription_id": "sub_1"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == 'Invalid action. Only "cancel" is supported.'


def test_subscription_cancel_ownership(client, monkeypatch):
    monkeypatch.setattr(payments, "cancel_subscription",
                        AsyncMock(side_effect=payments.SubscriptionOwnershipError("nope")))
    resp = client.post("/api/billing/subscription", json={"action": "cancel", "subscription_id": "sub_1"})
    assert resp.status_code == 403


def test_subscription_cancel_success(client, monkeypatch):
    monkeypatch.setattr(payments, "cancel_subscription", AsyncMock(return_value={
        "id": "sub_1", "cancel_at_period_end": True, "current_period_end": 1_800_000_000,
    }))
    resp = client.post("/api/billing/subscription", json={"action": "cancel", "subscription_id": "sub_1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Subscription will be cancelled at the end of the current billing period"
    assert body["subscription"]["cancel_at_period_end"] is True


def test_invoices(client, monkeypatch):
    monkeypatch.setattr(payments, "fetch_invoices", AsyncMock(return_value=[{"id": "in_1"}]))
    assert client.get("/api/billing/invoices").json() == {"invoices": [{"id": "in_1"}]}


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

def test_email_missing_fields(client):
    resp = client.post("/api/email/send", json={"to": "a@example.com"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing required email parameters"}


def test_email_delivery_failure_is_500(client, monkeypatch):
    monkeypatch.setattr(email_handler, "send_email",
                        AsyncMock(side_effect=email_handler.EmailDeliveryError("Failed to send email via Brevo: x")))
    resp = client.post("/api/email/send", json={"to": "a@example.com", "subject": "Hi", "htmlContent": "<p/>"})
    assert resp.status_code == 500
    assert resp.json()["error"].startswith("Failed to send email via Brevo")


def test_email_success(client, monkeypatch):
    monkeypatch.setattr(email_handler, "send_email", AsyncMock(return_value={"messageId": "m1"}))
    resp = client.post("/api/email/send", json={"to": "a@example.com", "subject": "Hi", "templateId": 3})
    assert resp.json() == {"success": True, "data": {"messageId": "m1"}}


# ---------------------------------------------------------------------------
# Auth rate limit
# ---------------------------------------------------------------------------

def test_rate_limit_bad_requests(client):
    assert client.post("/api/auth/rate-limit", json={"action": "login"}).status_code == 400
    assert client.post("/api/auth/rate-limit", json={"action": "hack", "identifier": "x"}).status_code == 400


def test_rate_limit_allows_then_blocks(client, monkeypatch):
    buckets = {}

    async def fake_load(self, session, key):
        return buckets.get(key, ([], None))

    async def fake_save(self, session, key, requests, reset_time):
        buckets[key] = (requests, reset_time)

    monkeypatch.setattr(RateLimiter, "_load_bucket", fake_load)
    monkeypatch.setattr(RateLimiter, "_save_bucket", fake_save)

    body = {"action": "password_reset", "identifier": "Reader@Example.com"}
    remaining = [client.post("/api/auth/rate-limit", json=body).json()["remaining"] for _ in range(3)]
    assert remaining == [2, 1, 0]

    blocked = client.post("/api/auth/rate-limit", json=body)
    assert blocked.status_code == 429
    assert blocked.json()["error"] == "Rate limit exceeded"
    assert blocked.json()["retryAfter"] > 0
    assert "Retry-After" in blocked.headers
    assert "password_reset:reader@example.com" in buckets


# ---------------------------------------------------------------------------
# Quiz sessions
# ---------------------------------------------------------------------------

def test_create_unknown_type_is_400(client, monkeypatch):
    monkeypatch.setattr(quiz_sessions, "get_user_profile", AsyncMock(return_value=None))
    monkeypatch.setattr(quiz_sessions, "get_user_tier", AsyncMock(return_value="free"))
    resp = client.post("/api/quiz/sessions", json={"type": "marathon"})
    assert resp.status_code == 400


def test_foreign_session_is_403(client, monkeypatch):
    monkeypatch.setattr(quiz_sessions, "get_owned_session",
                        AsyncMock(side_effect=quiz_sessions.QuizSessionForbidden("no")))
    assert client.get(f"/api/quiz/sessions/{uuid.uuid4()}").status_code == 403


def test_incorrect_on_multi_point_question_needs_partial(client, fake_user, make_question, monkeypatch):
    quiz = _quiz(fake_user.id, make_question(points=3))
    monkeypatch.setattr(quiz_sessions, "get_owned_session", AsyncMock(return_value=quiz))

    resp = client.post(f"/api/quiz/sessions/{quiz.id}/incorrect", json={})
    assert resp.status_code == 409
    assert resp.json()["detail"] == {"error": "Partial points required", "max_points": 3}


def test_correct_answer_completes_single_question_quiz(client, fake_user, make_question, monkeypatch):
    quiz = _quiz(fake_user.id, make_question(points=2))

    async def fake_update(session, q, updates):
        for k, v in updates.items():
            setattr(q, k, v)
        return q

    monkeypatch.setattr(quiz_sessions, "get_owned_session", AsyncMock(return_value=quiz))
    monkeypatch.setattr(quiz_sessions, "log_question_result", AsyncMock())
    monkeypatch.setattr(quiz_sessions, "update_quiz_session", fake_update)

    resp = client.post(f"/api/quiz/sessions/{quiz.id}/correct", json={"time_spent_seconds": 4.2})
    assert resp.status_code == 200
    body = resp.json()
    assert body["completed"] is True
    assert body["result"]["pointsEarned"] == 2
    assert body["result"]["timeSpent"] == 4
    assert body["state"]["status"] == "completed"
    assert body["stats"]["accuracy"] == 100
    quiz_sessions.log_question_result.assert_awaited_once()


def test_tick_endpoint_runs_several_seconds(client, fake_user, make_question, monkeypatch):
    quiz = _quiz(fake_user.id, make_question(time_to_answer=5), timer_active=True, timer_started=True)

    async def fake_update(session, q, updates):
        for k, v in updates.items():
            setattr(q, k, v)
        return q

    monkeypatch.setattr(quiz_sessions, "get_owned_session", AsyncMock(return_value=quiz))
    monkeypatch.setattr(quiz_sessions, "update_quiz_session", fake_update)

    state = client.post(f"/api/quiz/sessions/{quiz.id}/timer/tick?seconds=9").json()["state"]
    assert state["time_left"] == 0
    assert state["has_time_expired"] is True
    assert state["timer_active"] is False


@pytest.mark.parametrize("raw", ["Infinity", "NaN", "-1", "1e30"])
def test_answer_rejects_unusable_time_spent(client, fake_user, make_question, monkeypatch, raw):
    quiz = _quiz(fake_user.id, make_question())
    monkeypatch.setattr(quiz_sessions, "get_owned_session", AsyncMock(return_value=quiz))
    monkeypatch.setattr(quiz_sessions, "update_quiz_session", AsyncMock())

    resp = client.post(
        f"/api/quiz/sessions/{quiz.id}/correct",
        content='{"time_spent_seconds": %s}' % raw,
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 422
    quiz_sessions.update_quiz_session.assert_not_awaited()


def test_custom_quiz_keeps_requested_question_order(client, fake_user, make_question, monkeypatch):
    bank = [make_question(chapter=c) for c in (1, 2, 3)]
    created = {}

    async def fake_create(session, **kwargs):
        created.update(kwargs)
        return _quiz(fake_user.id, *kwargs["questions"])

    monkeypatch.setattr(quiz_sessions, "get_user_profile", AsyncMock(return_value=None))
    monkeypatch.setattr(quiz_sessions, "get_user_tier", AsyncMock(return_value="free"))
    monkeypatch.setattr(quiz_handler, "load_questions", AsyncMock(return_value=bank))
    monkeypatch.setattr(quiz_sessions, "create_quiz_session", fake_create)

    ids = [bank[2]["id"], bank[0]["id"], bank[1]["id"]]
    resp = client.post("/api/quiz/sessions", json={"type": "custom", "question_ids": ids})
    assert resp.status_code == 201
    assert [q["id"] for q in created["questions"]] == ids


def test_delete_completed_by_non_owner_is_403(client, monkeypatch):
    monkeypatch.setattr(quiz_sessions, "delete_quiz_session",
                        AsyncMock(side_effect=quiz_sessions.QuizSessionForbidden("Only team owners")))
    assert client.delete(f"/api/quiz/sessions/{uuid.uuid4()}").status_code == 403


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

def _member(user_id, role="member", email="m@example.com"):
    return SimpleNamespace(
        id=uuid.uuid4(), user_id=user_id, role=role, status="active",
        email=email, full_name="Member", joined_at=None,
    )


def _scalars(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    result.scalar_one_or_none.return_value = rows[0] if rows else None
    return result


def test_members_hidden_from_non_members(client, monkeypatch):
    team = SimpleNamespace(id=uuid.uuid4(), owner_id=uuid.uuid4(), name="Eagles", max_members=5)
    monkeypatch.setattr(teams_handler, "_load_team", AsyncMock(return_value=team))
    monkeypatch.setattr(teams_handler, "_actor_for", AsyncMock(return_value=Actor(id="x", team_role=None)))
    assert client.get(f"/api/teams/{team.id}/members").status_code == 403


def test_member_sees_only_own_email(client, fake_user, db_session, monkeypatch):
    team = SimpleNamespace(id=uuid.uuid4(), owner_id=uuid.uuid4(), name="Eagles", max_members=5)
    me = _member(uuid.UUID(fake_user.id), email="me@example.com")
    other = _member(uuid.uuid4(), email="other@example.com")
    monkeypatch.setattr(teams_handler, "_load_team", AsyncMock(return_value=team))
    monkeypatch.setattr(teams_handler, "_actor_for",
                        AsyncMock(return_value=Actor(id=fake_user.id, team_role="member")))
    db_session.execute = AsyncMock(return_value=_scalars([me, other]))

    members = client.get(f"/api/teams/{team.id}/members").json()["members"]
    emails = {m["user_id"]: m["email"] for m in members}
    assert emails[str(me.user_id)] == "me@example.com"
    assert emails[str(other.user_id)] is None


def test_team_owner_cannot_be_suspended(client, fake_user, db_session, monkeypatch):
    owner_id = uuid.uuid4()
    team = SimpleNamespace(id=uuid.uuid4(), owner_id=owner_id, name="Eagles", max_members=5)
    monkeypatch.setattr(teams_handler, "_load_team", AsyncMock(return_value=team))
    monkeypatch.setattr(teams_handler, "_actor_for",
                        AsyncMock(return_value=Actor(id=fake_user.id, team_role="admin")))
    db_session.execute = AsyncMock(return_value=_scalars([_member(owner_id, role="member")]))

    resp = client.post(f"/api/teams/{team.id}/members/{owner_id}/suspend")
    assert resp.status_code == 403


def test_admin_suspends_and_reinstates_member(client, fake_user, db_session, monkeypatch):
    team = SimpleNamespace(id=uuid.uuid4(), owner_id=uuid.uuid4(), name="Eagles", max_members=5)
    target = _member(uuid.uuid4())
    monkeypatch.setattr(teams_handler, "_load_team", AsyncMock(return_value=team))
    monkeypatch.setattr(teams_handler, "_actor_for",
                        AsyncMock(return_value=Actor(id=fake_user.id, team_role="admin")))
    db_session.execute = AsyncMock(return_value=_scalars([target]))

    resp = client.post(f"/api/teams/{team.id}/members/{target.user_id}/suspend")
    assert resp.status_code == 200
    assert resp.json()["member"]["status"] == "suspended"

    resp = client.post(f"/api/teams/{team.id}/members/{target.user_id}/reinstate")
    assert resp.json()["member"]["status"] == "active"
    assert db_session.commit.await_count == 2


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

def test_progress_summary(client, monkeypatch):
    from datetime import datetime, timezone
    from services import gamification

    completed = [
        {"total_points": 480, "bonus_xp": 30, "total_actual_time_spent_seconds": 5400,
         "completed_at": datetime(2025, 3, 9, 12, tzinfo=timezone.utc)},
    ]
    monkeypatch.setattr(gamification, "_load_completed_sessions", AsyncMock(return_value=completed))

    body = client.get("/api/progress").json()
    assert body["total_xp"] == 510
    assert body["current_level"] == 2
    assert body["xp_progress"]["current"] == 10
    assert body["total_study_time"] == "1h 30m"
    assert body["last_quiz_date"] == "2025-03-09"


def test_question_count_for_study_items(client, make_question, monkeypatch):
    from handlers import progress as progress_handler

    monkeypatch.setattr(quiz_sessions, "get_user_tier", AsyncMock(return_value="free"))
    monkeypatch.setattr(progress_handler, "load_questions", AsyncMock(return_value=[
        make_question(id="a", chapter=1), make_question(id="b", chapter=2), make_question(id="c", chapter=3),
    ]))

    body = client.post("/api/questions/count", json={"study_items": [{"book": "Ruth", "chapters": [1, 2]}]}).json()
    assert body == {"label": "Ruth (Ch. 1-2)", "count": 2}
