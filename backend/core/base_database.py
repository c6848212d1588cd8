from typing import Optional
from core.db.mongodb import MongoDBClient
from core.db.elastic import ElasticClient

from core.logger import Logger
logger = Logger(__name__)

class BaseDatabase:
    """Shared handles to the cache store (MongoDB) and the search backend (Elasticsearch)."""
    mongodb: Optional[MongoDBClient] = None
    elastic: Optional[ElasticClient] = None

    @classmethod
    def init_databases(cls, mongodb: MongoDBClient, elastic: ElasticClient):
        logger.info("Initializing databases..")
        BaseDatabase.mongodb = mongodb
        BaseDatabase.elastic = elastic
