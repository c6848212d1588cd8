from datetime import date, datetime, timezone

import pytest
from elasticsearch import exceptions

from modules.churn.engine import ChurnEngine, churn_rate, summarize
from modules.churn.errors import ChurnBackendError
from modules.churn.models import Granularity, PeriodStats, SummaryStats
from tests.factories import MEMBERSHIP_ID, add_subscription, make_seller


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _seed_daily_scenario(es):
    """Ten long-lived subscriptions and one created and cancelled on 2024-01-15."""
    for number in range(10):
        add_subscription(es, f"sub_{number}", date(2024, 1, 2))
    add_subscription(es, "sub_short", _utc(2024, 1, 15, 1), deactivated_at=_utc(2024, 1, 15, 10), price_cents=1000)


async def test_daily_scenario(es, elastic, seller):
    _seed_daily_scenario(es)
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 10), date(2024, 1, 20))

    by_date = await engine.by_date()

    assert list(by_date.keys()) == [f"2024-01-{day:02d}" for day in range(10, 21)]
    assert by_date["2024-01-15"] == PeriodStats(churned_users=1, revenue_lost_cents=1000, churn_rate=10.0, active_subscribers=10)
    for key, stats in by_date.items():
        if key != "2024-01-15":
            assert stats == PeriodStats(churned_users=0, revenue_lost_cents=0, churn_rate=0.0, active_subscribers=10)

    total = await engine.total_stats(by_date)
    assert total.churned_users == 1
    assert total.revenue_lost_cents == 1000
    # weighted by active base: 10.0 * 10 / (11 * 10)
    assert total.churn_rate == 0.91
    assert total.avg_active_base == 10


async def test_single_period_total_equals_period_rate(es, elastic, seller):
    _seed_daily_scenario(es)
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 15), date(2024, 1, 15))

    total = await engine.total_stats()

    assert total == SummaryStats(churned_users=1, revenue_lost_cents=1000, churn_rate=10.0, avg_active_base=10)


async def test_last_period_is_zero_before_earliest_date(es, elastic, seller):
    _seed_daily_scenario(es)
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 10), date(2024, 1, 20))

    assert await engine.last_period_stats() == SummaryStats.zero()


async def test_last_period_covers_same_number_of_days(es, elastic, seller):
    _seed_daily_scenario(es)
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 16), date(2024, 1, 20))

    last_period = await engine.last_period_stats()

    # 2024-01-11 .. 2024-01-15
    assert last_period.churned_users == 1
    assert last_period.revenue_lost_cents == 1000
    assert last_period.churn_rate == 2.0


async def test_last_period_degrades_to_zero_on_backend_error(es, elastic, seller):
    _seed_daily_scenario(es)
    es.error = exceptions.ConnectionError("search backend down")
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 16), date(2024, 1, 20))

    assert await engine.last_period_stats() == SummaryStats.zero()


async def test_backend_error_raises_retryable_error(es, elastic, seller):
    es.error = exceptions.ConnectionError("search backend down")
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 10), date(2024, 1, 20))

    with pytest.raises(ChurnBackendError) as exc_info:
        await engine.by_date()
    assert exc_info.value.retryable


async def test_empty_product_list_returns_zeros_without_searching(es, elastic, seller):
    engine = ChurnEngine(elastic, seller, [], date(2024, 1, 10), date(2024, 1, 12))

    by_date = await engine.by_date()

    assert list(by_date.keys()) == ["2024-01-10", "2024-01-11", "2024-01-12"]
    assert all(stats == PeriodStats() for stats in by_date.values())
    assert es.searches == []


async def test_range_before_earliest_date_clamps_to_first_sale_day(es, elastic, seller):
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2023, 1, 1), date(2023, 1, 31))

    assert engine.dates == (date(2024, 1, 1), date(2024, 1, 1))
    assert list((await engine.by_date()).keys()) == ["2024-01-01"]


async def test_reversed_range_is_empty(es, elastic, seller):
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 2, 1), date(2024, 1, 1))

    assert await engine.by_date() == {}
    assert await engine.total_stats() == SummaryStats.zero()
    assert es.searches == []


async def test_paginates_composite_buckets(es, elastic, seller):
    for day in range(1, 8):
        add_subscription(es, f"sub_{day}", date(2024, 1, 1), deactivated_at=date(2024, 1, 10 + day), price_cents=500)
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 11), date(2024, 1, 17))
    engine.page_size = 2

    by_date = await engine.by_date()

    assert sum(stats.churned_users for stats in by_date.values()) == 7
    assert all(stats.revenue_lost_cents == 500 for stats in by_date.values())
    composite_searches = [search for search in es.searches if "composite_agg" in (search["aggs"] or {})]
    # 7 buckets in pages of 2
    assert len(composite_searches) == 4


async def test_churn_rate_is_capped_at_100(es, elastic, seller):
    add_subscription(es, "sub_old", date(2024, 1, 2))
    for number in range(3):
        add_subscription(es, f"sub_new_{number}", _utc(2024, 1, 15, 1), deactivated_at=_utc(2024, 1, 15, 20))
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 15), date(2024, 1, 15))

    by_date = await engine.by_date()

    assert by_date["2024-01-15"].churned_users == 3
    assert by_date["2024-01-15"].active_subscribers == 1
    assert by_date["2024-01-15"].churn_rate == 100.0


async def test_only_charged_original_subscriptions_count(es, elastic, seller):
    add_subscription(es, "sub_ok", date(2024, 1, 2), deactivated_at=date(2024, 1, 15))
    add_subscription(es, "sub_failed", date(2024, 1, 2), deactivated_at=date(2024, 1, 15), purchase_state="failed")
    add_subscription(es, "sub_gift", date(2024, 1, 2), deactivated_at=date(2024, 1, 15), flags=("is_original_subscription_purchase", "is_gift_receiver_purchase"))
    add_subscription(es, "sub_charged_back", date(2024, 1, 2), deactivated_at=date(2024, 1, 15), chargeback_date=date(2024, 1, 5))
    add_subscription(
        es,
        "sub_reversed",
        date(2024, 1, 2),
        deactivated_at=date(2024, 1, 15),
        chargeback_date=date(2024, 1, 5),
        flags=("is_original_subscription_purchase", "chargeback_reversed"),
    )
    add_subscription(es, "sub_renewal", date(2024, 1, 2), deactivated_at=date(2024, 1, 15), flags=())
    engine = ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 15), date(2024, 1, 15))

    by_date = await engine.by_date()

    assert by_date["2024-01-15"].churned_users == 2
    assert by_date["2024-01-15"].active_subscribers == 2


async def test_periods_follow_seller_timezone(es, elastic):
    seller = make_seller(timezone="America/New_York")
    add_subscription(es, "sub_1", date(2024, 1, 2))
    add_subscription(es, "sub_2", date(2024, 1, 2), deactivated_at=_utc(2024, 2, 1, 3))

    monthly = await ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 1), date(2024, 2, 29), Granularity.MONTHLY).by_date()
    daily = await ChurnEngine(elastic, seller, [MEMBERSHIP_ID], date(2024, 1, 31), date(2024, 2, 1)).by_date()

    assert monthly["2024-01"].churned_users == 1
    assert monthly["2024-02"].churned_users == 0
    assert monthly["2024-02"].active_subscribers == 1
    assert daily["2024-01-31"].churned_users == 1
    assert daily["2024-02-01"].churned_users == 0


def test_churn_rate_handles_empty_base():
    assert churn_rate(5, 0) == 0.0
    assert churn_rate(1, 3) == 33.33


def test_equal_active_bases_average_to_simple_mean():
    by_date = {
        "2024-01-01": PeriodStats(churned_users=1, churn_rate=10.0, active_subscribers=10),
        "2024-01-02": PeriodStats(churned_users=2, churn_rate=20.0, active_subscribers=10),
        "2024-01-03": PeriodStats(churned_users=3, churn_rate=30.0, active_subscribers=10),
    }

    total = summarize(by_date)

    assert total.churn_rate == 20.0
    assert total.churned_users == 6
    assert total.avg_active_base == 10


def test_summary_of_no_periods_is_zero():
    assert summarize({}) == SummaryStats.zero()
