from typing import List, Optional

from elasticsearch import exceptions

from core.base_utils import BaseUtils
from core.config import ES_PURCHASES_INDEX
from core.logger import Logger
from .errors import ChurnBackendError, SellerNotFoundError
from .models import Product, Seller
from .queries import subscription_sales_query

logger = Logger(__name__)


class ChurnUtils(BaseUtils):
    """Seller and product lookups shared by the churn API, service and jobs."""

    async def get_seller(self, seller_id: str) -> Seller:
        sellers_collection = self.mongodb.get_collection("sellers")
        doc = await sellers_collection.find_one({"_id": str(seller_id)})
        if not doc:
            raise SellerNotFoundError(str(seller_id))
        return self.seller_from_doc(doc)

    def seller_from_doc(self, doc: dict) -> Seller:
        return Seller(**self.sanitize_mongo_doc(doc))

    async def analytics_products(self, seller_id: str) -> List[Product]:
        products_collection = self.mongodb.get_collection("products")
        docs = await products_collection.find({"seller_id": str(seller_id)}).to_list(length=None)
        return [Product(**self.sanitize_mongo_doc(doc)) for doc in docs]

    async def analytics_product_ids(self, seller_id: str) -> List[str]:
        return [product.id for product in await self.analytics_products(seller_id)]

    async def subscription_products(self, seller_id: str) -> List[Product]:
        """Products that can churn: recurring billing or tiered memberships."""
        return [product for product in await self.analytics_products(seller_id) if product.is_subscription]

    async def large_sellers(self) -> List[Seller]:
        sellers_collection = self.mongodb.get_collection("sellers")
        docs = await sellers_collection.find({"is_large_seller": True, "suspended": {"$ne": True}}).to_list(length=None)
        return [self.seller_from_doc(doc) for doc in docs]

    async def has_subscription_sales(self, seller_id: str, index: Optional[str] = None) -> bool:
        try:
            count = await self.elastic.count(index or ES_PURCHASES_INDEX, subscription_sales_query(str(seller_id)))
        except (exceptions.ApiError, exceptions.ConnectionError, exceptions.ConnectionTimeout) as e:
            raise ChurnBackendError(f"Subscription sales count failed for seller {seller_id}: {e}") from e
        logger.debug(f"Seller {seller_id} has {count} subscription sale(s)")
        return count > 0
