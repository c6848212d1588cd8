from datetime import date
from typing import Dict, Iterable, List, Optional

from .models import (
    ByDateSeries,
    ChurnPageProps,
    ChurnPayload,
    Granularity,
    LastPeriodBlock,
    PeriodStats,
    Product,
    ProductProps,
    SummaryStats,
    TotalBlock,
)
from .periods import period_dates, period_from_key


def ordinalize(number: int) -> str:
    if 10 <= number % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"


def period_label(key: str, granularity: Granularity) -> str:
    """Months read like 'March 2024', days like 'Friday, March 15th'."""
    day = period_from_key(key, granularity)
    if granularity == Granularity.MONTHLY:
        return day.strftime("%B %Y")
    return f"{day.strftime('%A, %B')} {ordinalize(day.day)}"


def format_first_sale_date(day: Optional[date]) -> Optional[str]:
    if day is None:
        return None
    return day.strftime("%B %d, %Y")


def period_keys(start: Optional[date], end: Optional[date], granularity: Granularity) -> List[str]:
    if start is None or end is None:
        return []
    return list(period_dates(start, end, granularity).keys())


def build_payload(
    keys: List[str],
    granularity: Granularity,
    data: Dict[str, PeriodStats],
    total: SummaryStats,
    last_period: SummaryStats,
    first_sale_date: Optional[date] = None,
) -> ChurnPayload:
    """Shape per-period data into the chart payload. Periods without data read as zero."""
    labels = [period_label(key, granularity) for key in keys]
    series = ByDateSeries()
    for key in keys:
        stats = data.get(key) or PeriodStats()
        series.churn_rate.append(stats.churn_rate)
        series.churned_users.append(stats.churned_users)
        series.revenue_lost_cents.append(stats.revenue_lost_cents)

    return ChurnPayload(
        dates=labels,
        start_date=labels[0] if labels else None,
        end_date=labels[-1] if labels else None,
        by_date=series,
        total=TotalBlock(
            churn_rate=total.churn_rate,
            churned_users=total.churned_users,
            revenue_lost_cents=total.revenue_lost_cents,
            avg_active_base=total.avg_active_base,
        ),
        last_period=LastPeriodBlock(
            churn_rate=last_period.churn_rate,
            churned_users=last_period.churned_users,
            revenue_lost_cents=last_period.revenue_lost_cents,
        ),
        first_sale_date=format_first_sale_date(first_sale_date),
    )


def zero_payload(keys: List[str], granularity: Granularity) -> ChurnPayload:
    """Same shape as a real payload with every number zeroed."""
    return build_payload(keys, granularity, {}, SummaryStats.zero(), SummaryStats.zero())


def page_props(products: Iterable[Product]) -> ChurnPageProps:
    return ChurnPageProps(
        products=[
            ProductProps(id=product.id, alive=product.alive, unique_permalink=product.unique_permalink, name=product.name)
            for product in products
            if product.is_subscription
        ]
    )
