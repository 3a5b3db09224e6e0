# ================================================================
# services/rate_limit.py
# ================================================================
"""
Sliding-window rate limiting persisted in the `rate_limits` table.

Each bucket row is keyed `<prefix>:<identifier>` and stores the epoch-ms
timestamps of accepted requests still inside the window. Storage errors
never block a caller: the limiter fails open.
"""
import logging
import math
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from helpers import get_client_identifier, mask_sensitive, utcnow
from models import RateLimit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_ms: int
    key_prefix: str


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int  # epoch ms
    retry_after: Optional[int] = None  # seconds


AUTH_LIMIT = RateLimitConfig(max_requests=5, window_ms=15 * 60 * 1000, key_prefix="auth")
PASSWORD_RESET_LIMIT = RateLimitConfig(max_requests=3, window_ms=60 * 60 * 1000, key_prefix="password_reset")
API_LIMIT = RateLimitConfig(max_requests=100, window_ms=60 * 1000, key_prefix="api")

ACTION_LIMITS = {
    "login": AUTH_LIMIT,
    "signup": AUTH_LIMIT,
    "password_reset": PASSWORD_RESET_LIMIT,
}

LONGEST_WINDOW_MS = max(c.window_ms for c in (AUTH_LIMIT, PASSWORD_RESET_LIMIT, API_LIMIT))


def now_ms() -> int:
    return int(time.time() * 1000)


def evaluate_window(requests: List[int], reset_time: Optional[int], config: RateLimitConfig,
                    now: int) -> Tuple[RateLimitResult, Optional[List[int]]]:
    """
    Pure window arithmetic. Returns the verdict and, when the request is
    accepted, the timestamps to store.
    """
    if not reset_time or reset_time <= now:
        reset_time = now + config.window_ms

    window_start = now - config.window_ms
    valid = [ts for ts in requests or [] if ts > window_start]

    if len(valid) >= config.max_requests:
        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_time=reset_time,
            retry_after=math.ceil((reset_time - now) / 1000),
        ), None

    valid.append(now)
    return RateLimitResult(
        allowed=True,
        remaining=config.max_requests - len(valid),
        reset_time=reset_time,
    ), valid


class RateLimiter:
    def __init__(self, config: RateLimitConfig):
        self.config = config

    def key(self, identifier: str) -> str:
        return f"{self.config.key_prefix}:{identifier}"

    async def _load_bucket(self, session: AsyncSession, key: str) -> Tuple[List[int], Optional[int]]:
        result = await session.execute(select(RateLimit).where(RateLimit.key == key))
        row = result.scalar_one_or_none()
        if not row:
            return [], None
        return list(row.requests or []), row.reset_time

    async def _save_bucket(self, session: AsyncSession, key: str, requests: List[int], reset_time: int):
        stmt = insert(RateLimit).values(key=key, requests=requests, reset_time=reset_time, updated_at=utcnow())
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimit.key],
            set_={
                "requests": stmt.excluded.requests,
                "reset_time": stmt.excluded.reset_time,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)
        await session.commit()

    async def check(self, session: AsyncSession, identifier: str, now: Optional[int] = None) -> RateLimitResult:
        now = now_ms() if now is None else now
        key = self.key(identifier)
        try:
            requests, reset_time = await self._load_bucket(session, key)
            result, to_store = evaluate_window(requests, reset_time, self.config, now)
            if to_store is not None:
                await self._save_bucket(session, key, to_store, result.reset_time)
        except Exception as e:
            logger.warning(f"⚠️ Rate limit store unavailable for {self.config.key_prefix}, failing open: {e}")
            try:
                await session.rollback()
            except Exception:
                logger.debug("rollback after rate limit failure also failed")
            return RateLimitResult(
                allowed=True,
                remaining=self.config.max_requests,
                reset_time=now + self.config.window_ms,
            )

        if not result.allowed:
            logger.info(f"🚦 Rate limit hit → {self.config.key_prefix}:{mask_sensitive(identifier)}")
        return result

    def headers(self, result: RateLimitResult) -> dict:
        headers = {
            "X-RateLimit-Limit": str(self.config.max_requests),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(math.ceil(result.reset_time / 1000)),
        }
        if result.retry_after:
            headers["Retry-After"] = str(result.retry_after)
        return headers


def limiter_for_action(action: str) -> Optional[RateLimiter]:
    config = ACTION_LIMITS.get(action)
    return RateLimiter(config) if config else None


api_limiter = RateLimiter(API_LIMIT)


async def enforce_api_rate_limit(request: Request, session: AsyncSession = Depends(get_session)) -> RateLimitResult:
    """Route dependency: 100 requests / minute per client address."""
    result = await api_limiter.check(session, get_client_identifier(request))
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers=api_limiter.headers(result),
        )
    return result
