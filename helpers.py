# ===============================================================
# helpers.py
# ===============================================================
import re
from datetime import datetime, timezone

from fastapi import Request

SENSITIVE_FIELDS = re.compile(r"password|token|email|phone|ssn|credit_card", re.IGNORECASE)
TOKEN_LIKE = re.compile(r"^[A-Za-z0-9+/=]+$")


# -------------------------------------------------
# Time
# -------------------------------------------------
def utcnow() -> datetime:
    """Timezone-aware UTC now (columns are timestamptz)."""
    return datetime.now(timezone.utc)


# ----------------------------
# 🧩 Mask Sensitive Helper
# ----------------------------
def mask_sensitive(data: str, visible: int = 4) -> str:
    """Mask all but last few visible characters of sensitive data."""
    if not data:
        return ""
    data = str(data)
    if len(data) <= visible:
        return data
    return f"{'*' * (len(data) - visible)}{data[-visible:]}"


def sanitize_for_logging(data):
    """
    Return a copy of a payload safe to log: values of keys that look like
    credentials or personal data are replaced by [REDACTED]. Nested dicts
    and lists are walked; bare strings that look like an email address or
    an opaque token are replaced too.
    """
    if not data:
        return data
    if isinstance(data, str):
        if "@" in data and "." in data:
            return "[EMAIL_REDACTED]"
        if len(data) > 20 and TOKEN_LIKE.match(data):
            return "[TOKEN_REDACTED]"
        return data
    if isinstance(data, dict):
        clean = {}
        for k, v in data.items():
            if SENSITIVE_FIELDS.search(str(k)):
                clean[k] = "[REDACTED]"
            elif isinstance(v, (dict, list)):
                clean[k] = sanitize_for_logging(v)
            else:
                clean[k] = v
        return clean
    if isinstance(data, list):
        return [sanitize_for_logging(v) for v in data]
    return data


# -------------------------------
# 🌐 Client identifier (behind proxies)
# --------------------------------
def get_client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    return "unknown"
