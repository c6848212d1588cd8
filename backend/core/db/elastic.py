import os
from typing import Optional
from elasticsearch import AsyncElasticsearch

from core.config import ES_REQUEST_TIMEOUT_SEC
from core.logger import Logger
logger = Logger(__name__)

class ElasticClient:
    def __init__(self, client: Optional[AsyncElasticsearch] = None):
        if client is None:
            username = os.getenv("ELASTIC_USERNAME", "")
            password = os.getenv("ELASTIC_PASSWORD", "")
            client = AsyncElasticsearch(
                [os.getenv("ELASTICSEARCH_HOSTS", "http://elasticsearch:9200")],
                basic_auth=(username, password) if username else None,
                request_timeout=ES_REQUEST_TIMEOUT_SEC,
            )
        self.client = client
        logger.info("Elasticsearch client initialized (async).")

    async def init(self):
        """Ping the cluster to ensure the connection is established."""
        if await self.client.ping():
            logger.info("Elasticsearch connection established successfully.")
        else:
            logger.error("Elasticsearch connection failed.")

    async def close(self):
        await self.client.close()

    async def create_index(self, index: str, body: dict):
        if not await self.client.indices.exists(index=index):
            await self.client.indices.create(index=index, **body)
            logger.info(f"Created index: {index}")
        else:
            logger.info(f"Index already exists: {index}")

    async def search(self, index: str, body: dict):
        """Run a search; `body` holds query/size/aggs keys."""
        response = await self.client.search(index=index, **body)
        logger.debug(f"Searched index {index} with body {body}")
        return response

    async def count(self, index: str, query: dict) -> int:
        response = await self.client.count(index=index, query=query)
        logger.debug(f"Counted index {index} with query {query}")
        return int(response["count"])
