# ==============================================================
# handlers/auth.py — Auth helpers the login / signup pages call
# ==============================================================
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from services.rate_limit import limiter_for_action
from utils.security import sanitize_input, validate_email, validate_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RateLimitRequest(BaseModel):
    action: Optional[str] = None
    identifier: Optional[str] = None


class SignupCheckRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


@router.post("/rate-limit")
async def check_rate_limit(body: RateLimitRequest, session: AsyncSession = Depends(get_session)):
    if not body.action or not body.identifier:
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})

    limiter = limiter_for_action(body.action)
    if limiter is None:
        return JSONResponse(status_code=400, content={"error": "Invalid action"})

    result = await limiter.check(session, body.identifier.strip().lower())
    headers = limiter.headers(result)

    if not result.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded", "retryAfter": result.retry_after},
            headers=headers,
        )
    return JSONResponse(
        status_code=200,
        content={"allowed": True, "remaining": result.remaining},
        headers=headers,
    )


@router.post("/validate")
async def validate_signup(body: SignupCheckRequest):
    """Server-side echo of the signup form checks."""
    email_ok, email_error = validate_email((body.email or "").strip())
    password_ok, password_error, strength = validate_password(body.password or "")
    return {
        "valid": email_ok and password_ok,
        "email": {"valid": email_ok, "error": email_error},
        "password": {"valid": password_ok, "error": password_error, "strength": strength},
        "name": sanitize_input(body.name or ""),
    }
