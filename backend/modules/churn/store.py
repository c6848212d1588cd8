import json
from datetime import datetime
from typing import Dict, Iterable, Optional, Set

from pydantic import ValidationError

from core.config import CHURN_CACHE_COLLECTION
from core.db.mongodb import MongoDBClient
from core.logger import Logger
from .models import CacheEntry, PeriodStats

logger = Logger(__name__)

PeriodData = Dict[str, PeriodStats]


def serialize(data: PeriodData) -> str:
    return json.dumps({key: stats.model_dump() for key, stats in data.items()})


def deserialize(key: str, blob: Optional[str]) -> Optional[PeriodData]:
    """Parse a stored blob; anything malformed counts as a miss."""
    if blob is None:
        return None
    try:
        return CacheEntry(key=key, data=json.loads(blob)).data
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning(f"Ignoring corrupt churn cache entry {key}: {e}")
        return None


class ChurnCacheStore:
    """
    Computed churn analytics keyed by cache key, one MongoDB document per key:
    {_id: key, data: <json {period_key: PeriodStats}>, created_at, updated_at}
    """

    def __init__(self, mongodb: MongoDBClient, collection_name: str = CHURN_CACHE_COLLECTION):
        self.mongodb = mongodb
        self.collection_name = collection_name

    async def batch_get(self, keys: Iterable[str]) -> Dict[str, Optional[PeriodData]]:
        """Read every key in one query. Missing or corrupt keys map to None."""
        keys = list(keys)
        if not keys:
            return {}
        docs = await self.mongodb.find_many(self.collection_name, {"_id": {"$in": keys}})
        blobs = {doc["_id"]: doc.get("data") for doc in docs}
        return {key: deserialize(key, blobs.get(key)) for key in keys}

    async def existing_keys(self, keys: Iterable[str]) -> Set[str]:
        keys = list(keys)
        if not keys:
            return set()
        docs = await self.mongodb.find_many(self.collection_name, {"_id": {"$in": keys}}, {"_id": 1})
        return {doc["_id"] for doc in docs}

    async def upsert(self, key: str, data: PeriodData):
        """Create or replace the entry for key."""
        now = datetime.utcnow()
        await self.mongodb.update_one(
            self.collection_name,
            {"_id": key},
            {"data": serialize(data), "updated_at": now},
            upsert=True,
            insert_values={"created_at": now},
        )
        logger.debug(f"Upserted churn cache entry {key}")

    async def insert_if_absent(self, key: str, data: PeriodData) -> bool:
        """Write-once: keeps an existing entry untouched. Returns True when a new entry was created."""
        now = datetime.utcnow()
        result = await self.mongodb.update_one(
            self.collection_name,
            {"_id": key},
            {},
            upsert=True,
            insert_values={"data": serialize(data), "created_at": now, "updated_at": now},
        )
        return result.upserted_id is not None

