import httpx
import pytest
from fastapi import HTTPException
from respx import MockRouter

from utils import security
from utils.security import fetch_auth_user, sanitize_input, validate_email, validate_password


def test_validate_email():
    assert validate_email("reader@example.com") == (True, None)
    assert validate_email("") == (False, "Email is required")
    assert validate_email("not-an-email") == (False, "Invalid email format")
    assert validate_email("a..b@example.com")[0] is False
    assert validate_email("a" * 250 + "@x.io") == (False, "Email too long")


def test_validate_password_strength_and_first_error():
    ok, error, strength = validate_password("Str0ng!Passw0rd")
    assert ok and error is None and strength == 100

    ok, error, strength = validate_password("short")
    assert not ok
    assert error == "Password must be at least 12 characters"
    assert strength == 20

    ok, error, _ = validate_password("alllowercase1!")
    assert error == "Password must contain at least one uppercase letter"


def test_sanitize_input():
    assert sanitize_input('<img src=x onerror=alert(1)>') == "img src=x alert(1)"
    assert sanitize_input("JavaScript:alert(1)") == "alert(1)"
    assert sanitize_input("") == ""


@pytest.mark.asyncio
async def test_fetch_auth_user(respx_mock: MockRouter):
    def respond(request: httpx.Request) -> httpx.Response:
        if request.headers["authorization"] == "Bearer good":
            return httpx.Response(200, json={"id": "u-1", "email": "reader@example.com"})
        return httpx.Response(401, json={"msg": "invalid JWT"})

    route = respx_mock.get(f"{security.SUPABASE_URL}/auth/v1/user").mock(side_effect=respond)

    assert (await fetch_auth_user("good"))["id"] == "u-1"
    assert await fetch_auth_user("bad") is None
    assert route.calls.last.request.headers["apikey"] == security.SUPABASE_ANON_KEY


@pytest.mark.asyncio
async def test_get_current_user(monkeypatch):
    async def fake_fetch(token, client=None):
        return {"id": "u-1", "email": "reader@example.com"} if token == "good" else None

    monkeypatch.setattr(security, "fetch_auth_user", fake_fetch)

    user = await security.get_current_user("Bearer good")
    assert user.id == "u-1"
    assert user.access_token == "good"

    for header in (None, "Basic abc", "Bearer ", "Bearer bad"):
        with pytest.raises(HTTPException) as exc:
            await security.get_current_user(header)
        assert exc.value.status_code == 401
