from core.base_database import BaseDatabase

from core.logger import Logger
logger = Logger(__name__)

class BaseService(BaseDatabase):
    """
    Base class for feature services.

    `es_mapping` lists the Elasticsearch indices the service reads, as
    [{"index": name, "schema": {"mappings": ..., "settings": ...}}]. They are
    created at startup by ServiceRegistry when missing.
    """
    name: str = "base"
    es_mapping: list = []

    def __init__(self):
        logger.info(f"Initializing service: {self.name}")
        super().__init__()
