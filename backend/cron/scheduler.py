import os
import asyncio
from pymongo import ReturnDocument
from datetime import datetime, timedelta
from croniter import croniter
from core.base_database import BaseDatabase
from core.loader import dynamic_import
from core.logger import Logger
from cron.registry import CRON_COLLECTION

logger = Logger(__name__)

LOCK_NAME = "cron_scheduler"
LOCK_COLLECTION = "startup_locks"
DEFAULT_MAX_RUNTIME_SEC = 600

SCHEDULE_UNITS = {"m", "h", "d", "w", "M", "y"}


def schedule_to_cron(schedule: str, reference: datetime = None) -> str:
    """
    Convert a "<n><unit>" schedule ("1m", "6h", "1d", comma separated parts
    allowed) to a cron expression anchored at the reference minute/hour.
    """
    reference = reference or datetime.utcnow()
    # minute, hour, day of month, month, day of week
    cron_parts = ['*', '*', '*', '*', '*']

    for part in schedule.split(','):
        part = part.strip()
        value, unit = part[:-1], part[-1:]
        if unit not in SCHEDULE_UNITS or not value.isdigit():
            logger.warning(f"Ignoring invalid schedule part '{part}' in '{schedule}'")
            continue
        value = int(value)

        if unit == 'm':
            cron_parts[0] = f"*/{value}"
            continue

        cron_parts[0] = str(reference.minute)
        if unit == 'h':
            cron_parts[1] = f"*/{value}"
            continue

        cron_parts[1] = str(reference.hour)
        if unit == 'd':
            cron_parts[2] = f"*/{value}"
        elif unit == 'w':
            cron_parts[2] = f"*/{value * 7}"
        elif unit == 'M':
            cron_parts[3] = f"*/{value}"
        elif unit == 'y':
            cron_parts[3] = f"*/{value * 12}"

    return ' '.join(cron_parts)


def next_run_after(schedule: str, now: datetime) -> datetime:
    return croniter(schedule_to_cron(schedule, now), now).get_next(datetime)


async def execute_job(job: dict):
    """Run one due job, bounded by its max_runtime_sec, and record the outcome."""
    collection = BaseDatabase.mongodb.get_collection(CRON_COLLECTION)
    job_id = job["_id"]
    started_at = datetime.utcnow()
    logger.info(f"Starting job: {job['name']}")

    await collection.update_one(
        {"_id": job_id},
        {"$set": {"running": True, "last_heartbeat": started_at}}
    )

    error = None
    try:
        JobClass = dynamic_import(str(job["file"]), job["class"])
        job_instance = JobClass(job.get("params", {}))
        job_instance.max_runtime_sec = job.get("max_runtime_sec", job_instance.max_runtime_sec)
        await job_instance.execute()
    except asyncio.TimeoutError:
        error = f"exceeded max runtime of {job.get('max_runtime_sec')}s"
        logger.error(f"Job {job['name']} {error}")
    except Exception as e:
        error = str(e)
        logger.exception(f"Job {job['name']} failed: {error}")

    now = datetime.utcnow()
    next_run = next_run_after(job["schedule"], now)
    await collection.update_one(
        {"_id": job_id},
        {"$set": {
            "last_run": now,
            "next_run": next_run,
            "running": False,
            "last_heartbeat": now,
            "last_error": error,
        }}
    )
    if error is None:
        logger.info(f"Completed job: {job['name']} (next run: {next_run})")


async def recover_stale_jobs():
    """Reset jobs left running past their own max runtime, e.g. by a crashed worker."""
    collection = BaseDatabase.mongodb.get_collection(CRON_COLLECTION)
    now = datetime.utcnow()
    running_jobs = await collection.find({"running": True}).to_list(length=None)

    for job in running_jobs:
        max_runtime_sec = job.get("max_runtime_sec") or DEFAULT_MAX_RUNTIME_SEC
        heartbeat = job.get("last_heartbeat")
        if heartbeat and heartbeat >= now - timedelta(seconds=max_runtime_sec):
            continue
        logger.warning(f"Resetting stale job: {job['name']}")
        await collection.update_one({"_id": job["_id"]}, {"$set": {"running": False}})


async def run_cron_jobs():
    """Run all due cron jobs concurrently."""
    collection = BaseDatabase.mongodb.get_collection(CRON_COLLECTION)
    now = datetime.utcnow()

    await recover_stale_jobs()

    due_jobs = await collection.find({
        "active": True,
        "next_run": {"$lte": now},
        "running": False
    }).to_list(length=None)

    if not due_jobs:
        logger.debug("No cron jobs ready to run.")
        return

    logger.info(f"{len(due_jobs)} cron jobs ready to execute.")
    await asyncio.gather(*(execute_job(job) for job in due_jobs))


async def acquire_scheduler_lock(ttl_seconds: int = 10) -> bool:
    """Only one worker process runs the scheduler; the lock document expires via a TTL index."""
    now = datetime.utcnow()
    startup_locks = BaseDatabase.mongodb.get_collection(LOCK_COLLECTION)

    try:
        await startup_locks.create_index("expiresAt", expireAfterSeconds=ttl_seconds)
    except Exception as e:
        logger.error(f"Failed to create index on {LOCK_COLLECTION}: {e}")

    try:
        result = await startup_locks.find_one_and_update(
            {"_id": LOCK_NAME},
            {
                "$setOnInsert": {
                    "owner": os.getpid(),
                    "expiresAt": now + timedelta(seconds=2),
                    "acquiredAt": now,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return result["owner"] == os.getpid()
    except Exception as e:
        # Another worker won the race
        logger.warning(f"Failed to acquire cron lock: {e}")
        return False


async def start_scheduler(interval_seconds: int = 60):
    """Poll for due jobs every interval_seconds until cancelled."""
    logger.info(f"Starting cron scheduler (interval={interval_seconds}s)")
    if not await acquire_scheduler_lock():
        logger.warning("Cron scheduler lock not acquired. Another instance may be running. Exiting scheduler.")
        return
    while True:
        try:
            await run_cron_jobs()
        except Exception as e:
            logger.exception(f"Scheduler loop error: {e}")
        await asyncio.sleep(interval_seconds)
