# ====================================================================
# tasks/__init__.py
# ===================================================================
"""
Housekeeping loops started with the API process:

- sweeper.py: expire team invitations past their deadline (hourly)
- cleanup.py: drop idle rate limit buckets (every 6h)
"""
import asyncio
from typing import List

from logger import logger
from . import periodic_tasks

__all__ = ["start_background_tasks", "stop_background_tasks"]

_running_tasks: List[asyncio.Task] = []


async def start_background_tasks() -> None:
    if _running_tasks:
        logger.debug("Background tasks already running, skipping start.")
        return
    _running_tasks.extend(await periodic_tasks.start_all_tasks(asyncio.get_running_loop()))
    logger.info(f"✅ {len(_running_tasks)} background tasks started.")


async def stop_background_tasks() -> None:
    logger.info("🛑 Stopping background tasks...")
    for task in _running_tasks:
        task.cancel()

    results = await asyncio.gather(*_running_tasks, return_exceptions=True)
    for task, result in zip(_running_tasks, results):
        if isinstance(result, Exception):
            logger.error(f"⚠️ Task '{task.get_name()}' ended with an error: {result}")

    _running_tasks.clear()
    logger.info("✅ All background tasks stopped.")
