from collections import OrderedDict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from elasticsearch import exceptions

from core.config import ES_MAX_BUCKET_SIZE, ES_PURCHASES_INDEX
from core.db.elastic import ElasticClient
from core.logger import Logger
from .errors import ChurnBackendError
from .models import Granularity, PeriodStats, Seller, SummaryStats
from .periods import clamp_range, month_start, period_dates, previous_range, start_of_day
from . import queries

logger = Logger(__name__)


def churn_rate(churned_users: int, active_subscribers: int) -> float:
    """Percentage of the active base that churned, capped at 100."""
    if active_subscribers <= 0:
        return 0.0
    return min(round(churned_users / active_subscribers * 100, 2), 100.0)


def summarize(by_date: Dict[str, PeriodStats]) -> SummaryStats:
    """
    Aggregate per-period stats into totals.

    The churn rate is the average of period rates weighted by each period's
    active base, clamped to [0, 100].
    """
    periods = list(by_date.values())
    total_churned = sum(period.churned_users for period in periods)
    total_revenue_lost = sum(period.revenue_lost_cents for period in periods)

    periods_with_data = [period for period in periods if period.active_subscribers > 0]
    avg_churn_rate = 0.0
    if periods_with_data:
        total_weighted_churn = sum(period.churn_rate * period.active_subscribers for period in periods_with_data)
        total_subscriber_base = sum(period.active_subscribers for period in periods_with_data)
        avg_churn_rate = round(total_weighted_churn / total_subscriber_base, 2)
        avg_churn_rate = min(max(avg_churn_rate, 0.0), 100.0)

    active_bases = [period.active_subscribers for period in periods]
    avg_active_base = sum(active_bases) / len(active_bases) if active_bases else 0

    return SummaryStats(
        churned_users=total_churned,
        revenue_lost_cents=total_revenue_lost,
        churn_rate=avg_churn_rate,
        avg_active_base=int(avg_active_base),
    )


class ChurnEngine:
    """
    Computes churn statistics for one seller, product set and date range
    straight from the purchases search index. Holds no state between calls.
    """

    def __init__(
        self,
        elastic: ElasticClient,
        seller: Seller,
        product_ids: Iterable[str],
        start_date: date,
        end_date: date,
        granularity: Granularity = Granularity.DAILY,
        index: str = ES_PURCHASES_INDEX,
    ):
        self.elastic = elastic
        self.seller = seller
        self.product_ids: List[str] = list(product_ids)
        self.granularity = granularity
        self.index = index
        self.page_size = ES_MAX_BUCKET_SIZE
        self.dates = clamp_range(start_date, end_date, seller.earliest_meaningful_date(), seller.today())

    async def by_date(self) -> Dict[str, PeriodStats]:
        """Period key -> PeriodStats for every period in the constrained range."""
        if self.dates is None:
            return OrderedDict()
        start, end = self.dates

        churn_data = await self._churned_by_period(start, end)

        result: Dict[str, PeriodStats] = OrderedDict()
        for key, period_date in period_dates(start, end, self.granularity).items():
            churned_users, revenue_lost_cents = churn_data.get(key, (0, 0))
            if self.granularity == Granularity.MONTHLY:
                period_start_date = month_start(period_date)
            else:
                period_start_date = period_date
            active_subscribers = await self.active_subscribers_on(period_start_date)
            result[key] = PeriodStats(
                churned_users=churned_users,
                revenue_lost_cents=revenue_lost_cents,
                churn_rate=churn_rate(churned_users, active_subscribers),
                active_subscribers=active_subscribers,
            )
        return result

    async def total_stats(self, by_date: Optional[Dict[str, PeriodStats]] = None) -> SummaryStats:
        if by_date is None:
            by_date = await self.by_date()
        return summarize(by_date)

    async def last_period_stats(self) -> SummaryStats:
        """
        Totals for the preceding range with the same number of days, whatever
        the granularity. Failures are logged and reported as zeros.
        """
        try:
            if self.dates is None:
                return SummaryStats.zero()
            last_period_start, last_period_end = previous_range(*self.dates)
            if last_period_start < self.seller.earliest_meaningful_date():
                return SummaryStats.zero()
            if last_period_start > last_period_end:
                return SummaryStats.zero()

            last_period_engine = ChurnEngine(
                self.elastic,
                self.seller,
                self.product_ids,
                last_period_start,
                last_period_end,
                granularity=self.granularity,
                index=self.index,
            )
            return await last_period_engine.total_stats()
        except Exception as e:
            logger.warning(f"Failed to calculate last period churn stats for seller {self.seller.id}: {e}")
            return SummaryStats.zero()

    async def active_subscribers_on(self, day: date) -> int:
        """Distinct subscriptions alive at the start of `day` in the seller's timezone."""
        if not self.product_ids:
            return 0
        cutoff = start_of_day(day, self.seller.tz)
        body = queries.active_subscribers_body(self.seller.id, self.product_ids, cutoff)
        response = await self._search(body)
        return int(response["aggregations"]["unique_subscriptions"]["value"] or 0)

    async def _churned_by_period(self, start: date, end: date) -> Dict[str, tuple]:
        """Period key -> (churned users, revenue lost in cents)."""
        if not self.product_ids:
            return {}
        tz = self.seller.tz
        query = queries.deactivations_query(
            self.seller.id,
            self.product_ids,
            start_of_day(start, tz),
            start_of_day(end + timedelta(days=1), tz),
        )
        sources = queries.deactivation_histogram_sources(self.granularity, self.seller.timezone)

        churn_data = {}
        for bucket in await self._paginate(query, sources):
            churn_data[bucket["key"]["date"]] = (
                int(bucket["doc_count"]),
                int(bucket["revenue_lost"]["value"] or 0),
            )
        return churn_data

    async def _paginate(self, query: dict, sources: list) -> List[dict]:
        """Walk composite buckets page by page until a short page comes back."""
        after_key = None
        buckets: List[dict] = []
        while True:
            body = queries.composite_body(query, sources, after_key=after_key, size=self.page_size)
            response = await self._search(body)
            composite = response["aggregations"]["composite_agg"]
            page = composite.get("buckets", [])
            buckets.extend(page)
            if len(page) < self.page_size:
                break
            after_key = composite.get("after_key")
            if not after_key:
                break
        return buckets

    async def _search(self, body: dict):
        try:
            return await self.elastic.search(self.index, body)
        except (exceptions.ApiError, exceptions.ConnectionError, exceptions.ConnectionTimeout) as e:
            logger.error(f"Churn search failed for seller {self.seller.id}: {e}")
            raise ChurnBackendError(f"Churn search failed for seller {self.seller.id}: {e}") from e
