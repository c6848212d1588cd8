from datetime import date
from typing import List, Optional

from core.base_service import BaseService
from core.registry import ServiceRegistry
from core.logger import Logger
from schema.purchases import ES_SCHEMA
from .engine import ChurnEngine, summarize
from .models import ChurnPageProps, ChurnPayload, Granularity, PurchaseUpdateEvent, Seller
from .periods import parse_requested_range
from .presenter import build_payload, page_props, period_keys, zero_payload
from .proxy import ChurnCachingProxy
from .regeneration import RegenerationQueue, regeneration_date_for_purchase_update
from .store import ChurnCacheStore
from .utils import ChurnUtils

logger = Logger(__name__)


class ChurnService(BaseService):
    name = "churn"
    es_mapping = ES_SCHEMA

    def __init__(self):
        super().__init__()
        self.utils = ChurnUtils()

    def store(self) -> ChurnCacheStore:
        return ChurnCacheStore(self.mongodb)

    def queue(self) -> RegenerationQueue:
        return RegenerationQueue(self.mongodb)

    def proxy_for(self, seller: Seller) -> ChurnCachingProxy:
        return ChurnCachingProxy(seller, self.elastic, self.store(), self.utils)

    async def page_props(self, seller: Seller) -> ChurnPageProps:
        return page_props(await self.utils.analytics_products(seller.id))

    async def data_by_date(
        self,
        seller: Seller,
        start_time: Optional[str],
        end_time: Optional[str],
        aggregate_by: Optional[str] = None,
        product_ids: Optional[List[str]] = None,
    ) -> ChurnPayload:
        """Chart payload for the requested dates, served through the cache where possible."""
        granularity = Granularity.from_param(aggregate_by)
        requested_start, requested_end = parse_requested_range(start_time, end_time, seller.today())

        proxy = self.proxy_for(seller)
        dates = proxy.requested_dates(requested_start, requested_end)
        start, end = dates if dates else (None, None)
        keys = period_keys(start, end, granularity)

        if not product_ids or dates is None:
            return zero_payload(keys, granularity)

        selected_ids = await self.selected_product_ids(seller, product_ids)
        if not selected_ids:
            return zero_payload(keys, granularity)

        subscription_ids = {product.id for product in await self.utils.subscription_products(seller.id)}
        # the full selection is answered from the cache
        scoped_ids = None if subscription_ids and subscription_ids <= set(selected_ids) else selected_ids

        data = await proxy.data_for_dates(start, end, granularity, product_ids=scoped_ids)
        total = summarize(data)
        last_period = await ChurnEngine(self.elastic, seller, selected_ids, start, end, granularity).last_period_stats()

        return build_payload(keys, granularity, data, total, last_period, seller.first_sale_date())

    async def selected_product_ids(self, seller: Seller, product_ids: List[str]) -> List[str]:
        """Requested ids that belong to the seller, in the seller's product order."""
        requested = {str(product_id) for product_id in product_ids}
        return [product.id for product in await self.utils.analytics_products(seller.id) if product.id in requested]

    async def purchase_updated(self, event: PurchaseUpdateEvent) -> Optional[date]:
        """Schedule a cache regeneration for a purchase change when it can affect churn."""
        seller = await self.utils.get_seller(event.purchase.seller_id)
        day = regeneration_date_for_purchase_update(event.purchase, event.changed_fields, seller, force=event.force)
        if day is None:
            logger.debug(f"Purchase update for seller {seller.id} does not affect cached churn")
            return None
        await self.queue().schedule(seller.id, day)
        return day

    async def regenerate(self, seller_id: str, day: date) -> int:
        """Overwrite the daily and monthly entries covering `day`. Returns the number rewritten."""
        seller = await self.utils.get_seller(seller_id)
        proxy = self.proxy_for(seller)
        overwritten = 0
        for granularity in (Granularity.DAILY, Granularity.MONTHLY):
            if await proxy.overwrite_cache(day, granularity):
                overwritten += 1
        return overwritten

    async def generate_cache(self, seller: Seller) -> int:
        return await self.proxy_for(seller).generate_cache()


ServiceRegistry.register_service("churn", ChurnService())
