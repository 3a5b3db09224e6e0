# ========================================================
# tasks/sweeper.py
# ========================================================
"""
Sweeper task: expire team invitations nobody answered in time.
Runs every hour.
"""

import asyncio

from sqlalchemy import update

from db import get_async_session
from helpers import utcnow
from models import TeamInvitation
from logger import logger

CHECK_INTERVAL_SECONDS = 60 * 60  # 1h


async def expire_invitations_loop():
    """Loop that periodically expires stale pending invitations."""
    while True:
        try:
            await expire_pending_invitations()
        except Exception as e:
            logger.exception(f"Sweeper task error: {e}")
        await asyncio.sleep(CHECK_INTERVAL_SECONDS)


async def expire_pending_invitations(now=None) -> int:
    """Mark pending invitations past `expires_at` as expired."""
    now = now or utcnow()
    async with get_async_session() as session:
        result = await session.execute(
            update(TeamInvitation)
            .where(TeamInvitation.status == "pending")
            .where(TeamInvitation.expires_at < now)
            .values(status="expired")
        )
        await session.commit()
        if result.rowcount:
            logger.info(f"📭 Expired {result.rowcount} pending team invitations.")
        else:
            logger.debug("No pending invitations to expire.")
        return result.rowcount or 0
