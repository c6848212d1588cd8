from bson import ObjectId
from core.base_database import BaseDatabase
from core.logger import Logger

logger = Logger(__name__)

class BaseUtils(BaseDatabase):
    def __init__(self):
        pass

    def sanitize_mongo_doc(self, doc):
        """Turn ObjectIds into strings and keep the rest JSON friendly."""
        if isinstance(doc, dict):
            return {k: self.sanitize_mongo_doc(v) for k, v in doc.items()}

        elif isinstance(doc, list):
            return [self.sanitize_mongo_doc(item) for item in doc]

        elif isinstance(doc, ObjectId):
            return str(doc)

        else:
            return doc
