from collections import OrderedDict
from datetime import date
from typing import Dict, Iterable, List, Optional

from core.config import get_cache_version
from core.db.elastic import ElasticClient
from core.logger import Logger
from .cache_keys import churn_cache_key
from .engine import ChurnEngine
from .errors import ChurnBackendError
from .models import CacheStrategy, Granularity, PeriodStats, Seller
from .periods import (
    DateRange,
    cache_periods,
    clamp_range,
    date_range,
    find_missing_ranges,
    is_cacheable,
    last_cacheable_date,
    month_end,
    period_bounds,
    period_dates,
    period_from_key,
    period_key,
)
from .store import ChurnCacheStore, PeriodData
from .utils import ChurnUtils

logger = Logger(__name__)


def merge_churn_data(chunks: Iterable[PeriodData], period_keys: Iterable[str]) -> Dict[str, PeriodStats]:
    """
    Merge cached and freshly computed chunks into one map ordered by period key.
    The first chunk providing a key wins; later ones never overwrite it.
    """
    merged: Dict[str, PeriodStats] = {}
    for chunk in chunks:
        for key, stats in chunk.items():
            merged.setdefault(key, stats)
    return OrderedDict((key, merged[key]) for key in period_keys if key in merged)


class ChurnCachingProxy:
    """
    Proxy for cached values of ChurnEngine.by_date
    - reads every cached period of a range in one query
    - computes only the missing contiguous ranges
    - writes fresh periods back unless they are still live
    """

    def __init__(self, seller: Seller, elastic: ElasticClient, store: ChurnCacheStore, utils: ChurnUtils):
        self.seller = seller
        self.elastic = elastic
        self.store = store
        self.utils = utils
        self._strategy: Optional[CacheStrategy] = None
        self._product_ids: Optional[List[str]] = None

    async def data_for_dates(
        self,
        start_date: date,
        end_date: date,
        granularity: Granularity = Granularity.DAILY,
        product_ids: Optional[List[str]] = None,
    ) -> Dict[str, PeriodStats]:
        dates = self.requested_dates(start_date, end_date)
        if dates is None:
            return OrderedDict()
        start, end = dates

        # product subsets are unbounded, so product-scoped queries are never cached
        if product_ids:
            return await self.analytics_data(start, end, granularity, product_ids=product_ids)

        if await self.cache_strategy() == CacheStrategy.BYPASS:
            return await self.analytics_data(start, end, granularity)

        version = get_cache_version()
        keys_to_periods = OrderedDict(
            (self.cache_key(period, granularity, version), period)
            for period in cache_periods(start, end, granularity)
        )
        cached = await self.store.batch_get(keys_to_periods.keys())
        data_for_periods = OrderedDict(
            (period, self.cached_period_data(key, cached.get(key), period, granularity))
            for key, period in keys_to_periods.items()
        )

        missing_ranges = find_missing_ranges(data_for_periods, granularity)
        logger.info(
            f"Churn cache for seller {self.seller.id} ({granularity.value}): "
            f"{len(data_for_periods)} period(s), {len(missing_ranges)} missing range(s)"
        )

        fresh_by_start: Dict[date, PeriodData] = {}
        for first_period, last_period in missing_ranges:
            range_start, _ = period_bounds(first_period, granularity)
            _, range_end = period_bounds(last_period, granularity)
            fresh_by_start[first_period] = await self.analytics_data(range_start, range_end, granularity)

        # written only once every missing range has been computed
        await self.write_through(fresh_by_start.values(), granularity, version)

        chunks: List[PeriodData] = []
        for period, period_data in data_for_periods.items():
            if period_data is not None:
                chunks.append(period_data)
            elif period in fresh_by_start:
                chunks.append(fresh_by_start[period])
        return merge_churn_data(chunks, period_dates(start, end, granularity).keys())

    async def generate_cache(self) -> int:
        """
        Backfill every uncached period from the first sale through the last
        cacheable day. Returns the number of entries written.
        """
        if self.seller.suspended:
            return 0
        first_sale_date = self.seller.first_sale_date()
        if first_sale_date is None:
            return 0
        last_date = last_cacheable_date(self.seller.today())
        if first_sale_date > last_date:
            return 0

        dates = date_range(first_sale_date, last_date)
        version = get_cache_version()
        generated = 0
        for granularity in (Granularity.DAILY, Granularity.MONTHLY):
            if granularity == Granularity.MONTHLY:
                # one entry per calendar month, represented by its last day
                dates_to_iterate = [day for day in dates if day == month_end(day)]
            else:
                dates_to_iterate = dates

            for day in await self.uncached_dates(dates_to_iterate, granularity, version):
                try:
                    written = await self.fetch_data(day, granularity, version)
                except ChurnBackendError as e:
                    logger.error(f"Skipping {granularity.value} churn cache of seller {self.seller.id} for {day}: {e}")
                    continue
                if written:
                    generated += 1

        logger.info(f"Generated {generated} churn cache entries for seller {self.seller.id}")
        return generated

    async def overwrite_cache(self, day: date, granularity: Granularity = Granularity.DAILY) -> bool:
        """
        Recompute the period containing `day` and replace its cache entry, e.g.
        after a subscription was cancelled or refunded.
        """
        if not is_cacheable(day, granularity, self.seller.today()):
            return False
        if await self.cache_strategy() == CacheStrategy.BYPASS:
            return False

        range_start, range_end = period_bounds(day, granularity)
        data = await self.analytics_data(range_start, range_end, granularity)
        await self.store.upsert(self.cache_key(day, granularity, get_cache_version()), data)
        logger.info(f"Overwrote {granularity.value} churn cache of seller {self.seller.id} for {day}")
        return True

    async def cache_strategy(self) -> CacheStrategy:
        """Caching only pays off for large sellers that sell subscriptions."""
        if self._strategy is None:
            eligible = self.seller.is_large_seller and await self.utils.has_subscription_sales(self.seller.id)
            self._strategy = CacheStrategy.CACHE_ELIGIBLE if eligible else CacheStrategy.BYPASS
            logger.debug(f"Churn cache strategy for seller {self.seller.id}: {self._strategy.value}")
        return self._strategy

    def cache_key(self, day: date, granularity: Granularity, version: str) -> str:
        return churn_cache_key(self.seller.id, self.seller.timezone, granularity, day, version)

    def requested_dates(self, start_date: date, end_date: date) -> Optional[DateRange]:
        return clamp_range(start_date, end_date, self.seller.earliest_meaningful_date(), self.seller.today())

    def cached_period_data(
        self, key: str, data: Optional[PeriodData], period: date, granularity: Granularity
    ) -> Optional[PeriodData]:
        """An entry only counts as a hit when it holds its own period."""
        if data is None:
            return None
        if period_key(period, granularity) not in data:
            logger.warning(f"Ignoring churn cache entry {key} without period {period_key(period, granularity)}")
            return None
        return data

    async def analytics_data(
        self,
        start_date: date,
        end_date: date,
        granularity: Granularity = Granularity.DAILY,
        product_ids: Optional[List[str]] = None,
    ) -> PeriodData:
        """Direct, uncached call to the engine."""
        if product_ids is None:
            product_ids = await self.all_product_ids()
        engine = ChurnEngine(self.elastic, self.seller, product_ids, start_date, end_date, granularity)
        return await engine.by_date()

    async def all_product_ids(self) -> List[str]:
        if self._product_ids is None:
            self._product_ids = await self.utils.analytics_product_ids(self.seller.id)
        return self._product_ids

    async def uncached_dates(self, dates: List[date], granularity: Granularity, version: str) -> List[date]:
        dates_to_keys = OrderedDict((day, self.cache_key(day, granularity, version)) for day in dates)
        existing_keys = await self.store.existing_keys(dates_to_keys.values())
        return [day for day, key in dates_to_keys.items() if key not in existing_keys]

    async def fetch_data(self, day: date, granularity: Granularity, version: str) -> bool:
        """Compute one period and store it write-once."""
        range_start, range_end = period_bounds(day, granularity)
        data = await self.analytics_data(range_start, range_end, granularity)
        return await self.store.insert_if_absent(self.cache_key(day, granularity, version), data)

    async def write_through(self, chunks: Iterable[PeriodData], granularity: Granularity, version: str):
        """Persist freshly computed periods, skipping live ones."""
        today = self.seller.today()
        for chunk in chunks:
            for key, stats in chunk.items():
                period = period_from_key(key, granularity)
                if not is_cacheable(period, granularity, today):
                    continue
                await self.store.upsert(self.cache_key(period, granularity, version), {key: stats})
