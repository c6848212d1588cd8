import hashlib
import inspect
from datetime import datetime
from core.base_database import BaseDatabase
from core.logger import Logger

logger = Logger(__name__)

CRON_COLLECTION = "cron_jobs"


def job_id_for(job_class) -> str:
    return f"{job_class.__module__}.{job_class.__name__}"


def job_fingerprint(job_class, params: dict = None):
    """Hash of the job source and scheduling attributes, used to detect changed jobs."""
    try:
        hash_text = (
            inspect.getsource(job_class) +
            str(getattr(job_class, "name", "")) +
            str(getattr(job_class, "schedule", "")) +
            str(getattr(job_class, "active", "")) +
            str(params or {}) +
            str(getattr(job_class, "max_runtime_sec", ""))
        )
    except OSError:
        return None
    return hashlib.md5(hash_text.encode("utf-8")).hexdigest()


class CronRegistry(BaseDatabase):
    """
    In-memory registry of cron job classes, mirrored into MongoDB once the
    databases are up. Unchanged jobs keep their schedule state.
    """

    _registry = {}

    @classmethod
    def add(cls, job_class, params: dict = None):
        params = params or {}
        job_id = job_id_for(job_class)
        cls._registry[job_id] = {
            "class": job_class,
            "params": params,
            "hash": job_fingerprint(job_class, params),
        }
        return job_id

    @classmethod
    async def register_cron(cls, job_class, params: dict = None):
        """Register a job class and sync it to the database right away."""
        job_id = cls.add(job_class, params)
        entry = cls._registry[job_id]
        await cls._sync_to_db(job_class, entry["params"], job_id, entry["hash"])

    @classmethod
    async def _sync_to_db(cls, job_class, params, job_id, job_hash):
        collection = cls.mongodb.get_collection(CRON_COLLECTION)

        now = datetime.utcnow()
        job_data = {
            "_id": job_id,
            "name": getattr(job_class, "name", None) or job_class.__name__,
            "file": job_class.__module__,
            "class": job_class.__name__,
            "schedule": getattr(job_class, "schedule", "1m"),
            "active": getattr(job_class, "active", True),
            "params": params,
            "job_hash": job_hash,
            "max_runtime_sec": getattr(job_class, "max_runtime_sec", 600),
            "updated_at": now,
        }

        existing = await collection.find_one({"_id": job_id})

        if not existing:
            job_data.update({
                "created_at": now,
                "last_run": None,
                "next_run": now,
                "running": False
            })
            await collection.insert_one(job_data)
            logger.info(f"Registered new cron job: {job_id}")

        elif existing.get("job_hash") != job_hash:
            await collection.update_one({"_id": job_id}, {"$set": job_data})
            logger.info(f"Updated cron job: {job_id}")

        else:
            logger.debug(f"Cron job already up-to-date: {job_id}")

    @classmethod
    def list_registered_jobs(cls):
        return list(cls._registry.keys())

    @classmethod
    async def sync_all_to_db(cls):
        for job_id, job_info in cls._registry.items():
            await cls._sync_to_db(job_info["class"], job_info["params"], job_id, job_info["hash"])


def cron_job(cls):
    """Class decorator registering a cron job; the DB sync happens at startup."""
    CronRegistry.add(cls)
    return cls
