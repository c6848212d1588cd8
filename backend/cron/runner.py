import os
import asyncio
from typing import Optional
from cron.scheduler import start_scheduler
from core.logger import Logger

logger = Logger(__name__)

CRON_INTERVAL_SEC = int(os.getenv("CRON_INTERVAL_SEC", "60"))

async def init_cron_background(interval_seconds: Optional[int] = None) -> asyncio.Task:
    """
    Launch the cron scheduler as a background task in the current event loop.
    Called from the FastAPI lifespan; cancel the returned task on shutdown.
    """
    interval_seconds = interval_seconds or CRON_INTERVAL_SEC
    logger.debug(f"Starting background cron scheduler (every {interval_seconds}s)...")
    return asyncio.create_task(start_scheduler(interval_seconds))

async def stop_cron_background(task: Optional[asyncio.Task]):
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.debug("Cron scheduler stopped.")
