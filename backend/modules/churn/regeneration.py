from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from pymongo import ReturnDocument

from core import config
from core.db.mongodb import MongoDBClient
from core.logger import Logger
from .models import PurchaseChange, Seller

logger = Logger(__name__)

# purchase fields whose change can alter churn numbers
CHURN_AFFECTING_FIELDS = {
    "subscription_deactivated_at",
    "chargeback_date",
    "flags",
    "purchase_state",
    "stripe_refunded",
}

PENDING = "pending"
RUNNING = "running"
FAILED = "failed"


def regeneration_date_for_purchase_update(
    change: PurchaseChange,
    changed_fields: Iterable[str],
    seller: Seller,
    force: bool = False,
) -> Optional[date]:
    """
    Date whose cached churn must be recomputed after a purchase update, or None.

    Only subscription purchases matter. The deactivation date is used when the
    deactivation itself changed, the purchase date otherwise. Today is never
    cached so it never needs regenerating.
    """
    if not change.subscription_id:
        return None
    changed_fields = set(changed_fields)
    if not force and not CHURN_AFFECTING_FIELDS & changed_fields:
        return None

    if "subscription_deactivated_at" in changed_fields and change.subscription_deactivated_at:
        cache_date = seller.local_date(change.subscription_deactivated_at)
    else:
        cache_date = seller.local_date(change.created_at)

    if cache_date == seller.today():
        return None
    return cache_date


def job_id(seller_id: str, day: date) -> str:
    return f"{seller_id}:{day.isoformat()}"


class RegenerationQueue:
    """
    Deduplicated, delayed queue of (seller, date) cache regenerations in MongoDB.

    Job document:
    {_id: "<seller_id>:<YYYY-MM-DD>", seller_id, date, status, run_at,
     attempts, rerun, last_error, started_at, created_at}

    pending -> running -> (deleted | pending on rerun/retry | failed)
    """

    def __init__(self, mongodb: MongoDBClient, collection_name: Optional[str] = None):
        self.mongodb = mongodb
        self.collection_name = collection_name or config.CHURN_REGENERATION_COLLECTION

    @property
    def collection(self):
        return self.mongodb.get_collection(self.collection_name)

    async def schedule(self, seller_id: str, day: date, delay_sec: Optional[int] = None) -> str:
        """
        Enqueue a regeneration. Triggers collapse into an existing pending job;
        a trigger for a running job flags one re-run; a failed job is revived.
        """
        if delay_sec is None:
            delay_sec = config.CHURN_REGENERATION_DELAY_SEC
        now = datetime.utcnow()
        run_at = now + timedelta(seconds=delay_sec)
        _id = job_id(seller_id, day)

        result = await self.collection.update_one(
            {"_id": _id},
            {
                "$setOnInsert": {
                    "seller_id": str(seller_id),
                    "date": day.isoformat(),
                    "status": PENDING,
                    "run_at": run_at,
                    "attempts": 0,
                    "rerun": False,
                    "last_error": None,
                    "created_at": now,
                }
            },
            upsert=True,
        )
        if result.upserted_id is not None:
            logger.info(f"Scheduled churn cache regeneration {_id}")
            return _id

        rerun = await self.collection.update_one({"_id": _id, "status": RUNNING}, {"$set": {"rerun": True}})
        if rerun.modified_count:
            logger.debug(f"Churn cache regeneration {_id} is running, flagged for re-run")
            return _id

        revived = await self.collection.update_one(
            {"_id": _id, "status": FAILED},
            {"$set": {"status": PENDING, "run_at": run_at, "attempts": 0, "last_error": None}},
        )
        if revived.modified_count:
            logger.info(f"Re-scheduled failed churn cache regeneration {_id}")
        else:
            logger.debug(f"Churn cache regeneration {_id} already pending")
        return _id

    async def claim_due(self, now: Optional[datetime] = None) -> Optional[dict]:
        """Atomically move the oldest due pending job to running."""
        now = now or datetime.utcnow()
        return await self.collection.find_one_and_update(
            {"status": PENDING, "run_at": {"$lte": now}},
            {"$set": {"status": RUNNING, "started_at": now, "rerun": False}},
            sort=[("run_at", 1)],
            return_document=ReturnDocument.AFTER,
        )

    async def complete(self, job: dict):
        """Drop a finished job, or put it back when a trigger arrived while it ran."""
        deleted = await self.collection.delete_one({"_id": job["_id"], "status": RUNNING, "rerun": False})
        if deleted.deleted_count:
            return
        await self.collection.update_one(
            {"_id": job["_id"]},
            {
                "$set": {
                    "status": PENDING,
                    "rerun": False,
                    "attempts": 0,
                    "run_at": datetime.utcnow() + timedelta(seconds=config.CHURN_REGENERATION_DELAY_SEC),
                }
            },
        )
        logger.info(f"Churn cache regeneration {job['_id']} re-queued after new trigger")

    async def fail(self, job: dict, error: str) -> bool:
        """Record a failed attempt. Returns True when the job gave up for good."""
        attempts = job.get("attempts", 0) + 1
        if attempts >= config.CHURN_REGENERATION_MAX_ATTEMPTS:
            await self.collection.update_one(
                {"_id": job["_id"]},
                {"$set": {"status": FAILED, "attempts": attempts, "last_error": error, "rerun": False}},
            )
            logger.error(f"Churn cache regeneration {job['_id']} failed after {attempts} attempt(s): {error}")
            return True

        await self.collection.update_one(
            {"_id": job["_id"]},
            {
                "$set": {
                    "status": PENDING,
                    "attempts": attempts,
                    "last_error": error,
                    "run_at": datetime.utcnow() + timedelta(seconds=config.CHURN_REGENERATION_DELAY_SEC),
                }
            },
        )
        logger.warning(f"Churn cache regeneration {job['_id']} failed (attempt {attempts}), retrying: {error}")
        return False

    async def recover_stale(self, max_runtime_sec: Optional[int] = None) -> int:
        """Put jobs stuck in running back to pending, e.g. after a worker crash."""
        if max_runtime_sec is None:
            max_runtime_sec = config.CHURN_REGENERATION_TIMEOUT_SEC
        cutoff = datetime.utcnow() - timedelta(seconds=max_runtime_sec)
        result = await self.collection.update_many(
            {"status": RUNNING, "started_at": {"$lt": cutoff}},
            {"$set": {"status": PENDING, "run_at": datetime.utcnow()}},
        )
        if result.modified_count:
            logger.warning(f"Reset {result.modified_count} stale churn cache regeneration job(s)")
        return result.modified_count
