import os
from typing import List, Optional
from urllib.parse import quote_plus
from motor.motor_asyncio import AsyncIOMotorClient

from core.logger import Logger
logger = Logger(__name__)

MONGO_USER = os.getenv("MONGO_USER", "")
MONGO_PASSWORD = os.getenv("MONGO_PASSWORD", "")
MONGO_HOST = os.getenv("MONGO_HOST", "")
MONGO_PORT = os.getenv("MONGO_PORT", "")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "")

class MongoDBClient:
    def __init__(self, client=None, db_name: Optional[str] = None):
        self.db_name = db_name or MONGO_DB_NAME
        if client is None:
            MONGO_URI = f"mongodb://{quote_plus(MONGO_USER)}:{quote_plus(MONGO_PASSWORD)}@{MONGO_HOST}:{MONGO_PORT}/{self.db_name}?authSource={self.db_name}"
            client = AsyncIOMotorClient(MONGO_URI)
        self.client = client
        self.db = self.client[self.db_name]
        logger.info("MongoDB client initialized (async).")

    async def init(self):
        """Initialize async connection and verify database access."""
        try:
            await self.client.admin.command('ping')
            logger.info("MongoDB connection established successfully.")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    def get_collection(self, name: str):
        return self.db[name]

    async def find_one(self, collection_name: str, query: dict):
        """Find a single document."""
        collection = self.get_collection(collection_name)
        return await collection.find_one(query)

    async def find_many(self, collection_name: str, query: dict, projection: dict = None) -> List[dict]:
        """Find every document matching the query."""
        collection = self.get_collection(collection_name)
        return await collection.find(query, projection).to_list(length=None)

    async def update_one(self, collection_name: str, query: dict, update_values: dict, upsert: bool = False, insert_values: dict = None):
        """$set update_values; insert_values are only written when the upsert creates the document."""
        collection = self.get_collection(collection_name)
        update = {}
        if update_values:
            update['$set'] = update_values
        if insert_values:
            update['$setOnInsert'] = insert_values
        result = await collection.update_one(query, update, upsert=upsert)
        logger.debug(f"Updated {result.modified_count} document(s) in collection {collection_name} matching query {query} with upsert={upsert}")
        return result
