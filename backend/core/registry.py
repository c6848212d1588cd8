import os
from typing import Dict
from core.logger import Logger

logger = Logger(__name__)

SKIP_INDEX_REGISTRATION = os.getenv("SKIP_INDEX_REGISTRATION", "false").lower() == "true"

class ServiceRegistry:
    _services: Dict[str, object] = {}
    _apis: Dict[str, object] = {}

    @classmethod
    def register_service(cls, name: str, service: object):
        """Register a service; its Elasticsearch indices are created on startup."""
        cls._services[name] = service

    @classmethod
    def get_service(cls, name: str):
        return cls._services.get(name)

    @classmethod
    async def register_es_indices(cls):
        """Create the Elasticsearch indices declared by every registered service."""
        for name, service in cls._services.items():
            if not service.elastic or not service.es_mapping:
                continue
            for schema in service.es_mapping:
                index = schema.get("index")
                body = schema.get("schema", {})
                if not index or not body:
                    logger.warning(f"Invalid ES mapping for service {name}: {schema}")
                    continue
                if SKIP_INDEX_REGISTRATION:
                    logger.info(f"Skipping ES index registration for {index} due to SKIP_INDEX_REGISTRATION setting.")
                    continue
                try:
                    await service.elastic.create_index(index, body)
                except Exception as e:
                    logger.error(f"Failed to create ES index {index} for service {name}: {e}")

    @classmethod
    def register_api(cls, name: str, router):
        """Register an API router for the service."""
        if name in cls._apis:
            logger.warning(f"API name conflict for name {name}, {router.prefix} is already registered under route {cls._apis[name].prefix}, overwriting.")
        cls._apis[name] = router

    @classmethod
    def get_all_apis(cls):
        """Get all registered API routers."""
        return cls._apis.values()
