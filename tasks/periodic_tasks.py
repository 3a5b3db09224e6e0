# ========================================================
# tasks/periodic_tasks.py
# ========================================================
"""
Periodic background task manager for:
- Sweeper for expired team invitations
- Rate limit bucket cleanup
"""
import asyncio

from logger import logger

from . import sweeper, cleanup


# ------------------------------------------
# Start All Tasks
# --------------------------------------------

async def start_all_tasks(loop: asyncio.AbstractEventLoop = None) -> list[asyncio.Task]:
    """
    Boot all repeating service loops (non-blocking)
    """
    if loop is None:
        loop = asyncio.get_running_loop()

    tasks = [
        loop.create_task(sweeper.expire_invitations_loop(), name="SweeperLoop"),
        loop.create_task(cleanup.cleanup_loop(), name="CleanupLoop"),
    ]

    logger.info("🚀 All periodic background tasks are now running")
    return tasks
