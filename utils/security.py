# ===============================================================
# utils/security.py
# ===============================================================
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Header, HTTPException

from config import SUPABASE_URL, SUPABASE_ANON_KEY
from helpers import mask_sensitive

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------
# 🔑 Authenticated caller (bearer token resolved by hosted auth)
# ---------------------------------------------------------------
@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None
    access_token: Optional[str] = None


async def fetch_auth_user(token: str, client: httpx.AsyncClient | None = None) -> Optional[dict]:
    """Ask the hosted auth service who owns this access token. None when rejected."""
    headers = {"apikey": SUPABASE_ANON_KEY, "Authorization": f"Bearer {token}"}
    url = f"{SUPABASE_URL}/auth/v1/user"

    if client is None:
        async with httpx.AsyncClient(timeout=10) as c:
            resp = await c.get(url, headers=headers)
    else:
        resp = await client.get(url, headers=headers)

    if resp.status_code != 200:
        logger.warning(f"🔒 Token rejected by auth service (status={resp.status_code})")
        return None
    return resp.json()


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token.strip()


async def get_current_user(authorization: Optional[str] = Header(None)) -> CurrentUser:
    """FastAPI dependency: 401 unless the bearer token belongs to a live user."""
    token = _bearer_token(authorization)
    try:
        data = await fetch_auth_user(token)
    except httpx.HTTPError as e:
        logger.error(f"❌ Auth service unreachable: {e}")
        raise HTTPException(status_code=401, detail="Could not verify token")

    if not data or not data.get("id"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    logger.debug(f"🔑 Authenticated user {mask_sensitive(data['id'])}")
    return CurrentUser(id=data["id"], email=data.get("email"), access_token=token)


# ---------------------------------------------------------------
# 🧼 Input sanitising & validation
# ---------------------------------------------------------------
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
SPECIAL_CHARS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")
MAX_EMAIL_LENGTH = 254
MIN_PASSWORD_LENGTH = 12


def sanitize_input(value: str) -> str:
    """Strip angle brackets, javascript: URLs and inline event handlers."""
    if not value:
        return ""
    value = re.sub(r"[<>]", "", value)
    value = re.sub(r"javascript:", "", value, flags=re.IGNORECASE)
    value = re.sub(r"on\w+=", "", value, flags=re.IGNORECASE)
    return value.strip()


def validate_email(email: str) -> tuple[bool, Optional[str]]:
    if not email:
        return False, "Email is required"
    if not EMAIL_PATTERN.match(email):
        return False, "Invalid email format"
    if ".." in email or email.startswith(".") or email.endswith("."):
        return False, "Invalid email format"
    if len(email) > MAX_EMAIL_LENGTH:
        return False, "Email too long"
    return True, None


def validate_password(password: str) -> tuple[bool, Optional[str], int]:
    """
    Returns (is_valid, error, strength). Strength grows by 20 for each of:
    length, lowercase, uppercase, digit, special character.
    """
    if not password:
        return False, "Password is required", 0

    checks = [
        (len(password) >= MIN_PASSWORD_LENGTH, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"),
        (bool(re.search(r"[a-z]", password)), "Password must contain at least one lowercase letter"),
        (bool(re.search(r"[A-Z]", password)), "Password must contain at least one uppercase letter"),
        (bool(re.search(r"\d", password)), "Password must contain at least one number"),
        (bool(SPECIAL_CHARS.search(password)), 'Password must contain at least one special character (!@#$%^&*(),.?":{}|<>)'),
    ]
    strength = sum(20 for ok, _ in checks if ok)

    for ok, error in checks:
        if not ok:
            return False, error, strength
    return True, None, strength
