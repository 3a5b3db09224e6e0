# =======================================================
# tasks/cleanup.py
# =======================================================
"""
Cleanup task: drop rate limit buckets nobody has touched for longer
than the widest limiter window.
"""

import asyncio
from datetime import timedelta

from sqlalchemy import delete

from db import get_async_session
from helpers import utcnow
from logger import logger
from models import RateLimit
from services.rate_limit import LONGEST_WINDOW_MS

CHECK_INTERVAL_SECONDS = 60 * 60 * 6  # every 6h


async def cleanup_loop():
    """Loop that runs cleanup tasks every 6 hours."""
    while True:
        try:
            await prune_rate_limits()
        except Exception as e:
            logger.exception(f"Cleanup task error: {e}")
        await asyncio.sleep(CHECK_INTERVAL_SECONDS)


async def prune_rate_limits(now=None) -> int:
    cutoff = (now or utcnow()) - timedelta(milliseconds=LONGEST_WINDOW_MS)
    async with get_async_session() as session:
        result = await session.execute(delete(RateLimit).where(RateLimit.updated_at < cutoff))
        await session.commit()
        if result.rowcount:
            logger.info(f"🧹 Pruned {result.rowcount} stale rate limit buckets.")
        return result.rowcount or 0
