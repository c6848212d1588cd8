from datetime import datetime
from typing import Any, Dict, List, Optional

from core.config import ES_MAX_BUCKET_SIZE
from .models import Granularity

# Purchase states that count as a charged sale
SUCCESSFUL_PURCHASE_STATES = ["successful", "preorder_concluded_successfully", "gift_sender_purchase_successful"]
ORIGINAL_SUBSCRIPTION_FLAG = "is_original_subscription_purchase"
GIFT_RECEIVER_FLAG = "is_gift_receiver_purchase"
CHARGEBACK_REVERSED_FLAG = "chargeback_reversed"

DEACTIVATION_FIELD = "subscription_deactivated_at"
# exact counts up to this many distinct subscriptions
CARDINALITY_PRECISION = 40000

HISTOGRAM_INTERVALS = {
    Granularity.DAILY: ("day", "yyyy-MM-dd"),
    Granularity.MONTHLY: ("month", "yyyy-MM"),
}


def charged_sales_query(seller_id: str) -> Dict[str, Any]:
    """Bool query matching the seller's charged sales; callers append their own clauses."""
    return {
        "bool": {
            "must": [],
            "filter": [
                {"term": {"seller_id": seller_id}},
                {"terms": {"purchase_state": SUCCESSFUL_PURCHASE_STATES}},
            ],
            "must_not": [
                {"term": {"selected_flags": GIFT_RECEIVER_FLAG}},
                {
                    "bool": {
                        "filter": [{"exists": {"field": "chargeback_date"}}],
                        "must_not": [{"term": {"selected_flags": CHARGEBACK_REVERSED_FLAG}}],
                    }
                },
            ],
        }
    }


def deactivations_query(seller_id: str, product_ids: List[str], range_start: datetime, range_end: datetime) -> Dict[str, Any]:
    """Original subscription purchases deactivated in [range_start, range_end)."""
    query = charged_sales_query(seller_id)
    query["bool"]["must"].append({"exists": {"field": DEACTIVATION_FIELD}})
    query["bool"]["must"].append({"term": {"selected_flags": ORIGINAL_SUBSCRIPTION_FLAG}})
    query["bool"]["filter"].append({"terms": {"product_id": list(product_ids)}})
    query["bool"]["filter"].append(
        {"range": {DEACTIVATION_FIELD: {"gte": range_start.isoformat(), "lt": range_end.isoformat()}}}
    )
    return query


def deactivation_histogram_sources(granularity: Granularity, timezone: str) -> List[Dict[str, Any]]:
    calendar_interval, date_format = HISTOGRAM_INTERVALS[granularity]
    return [
        {
            "date": {
                "date_histogram": {
                    "field": DEACTIVATION_FIELD,
                    "calendar_interval": calendar_interval,
                    "time_zone": timezone,
                    "format": date_format,
                }
            }
        }
    ]


def composite_body(query: Dict[str, Any], sources: List[Dict[str, Any]], after_key: Optional[Dict[str, Any]] = None, size: int = ES_MAX_BUCKET_SIZE) -> Dict[str, Any]:
    """One page of churned-subscription buckets with the revenue they represented."""
    composite: Dict[str, Any] = {"size": size, "sources": sources}
    if after_key:
        composite["after"] = after_key
    return {
        "query": query,
        "size": 0,
        "aggs": {
            "composite_agg": {
                "composite": composite,
                "aggs": {
                    "revenue_lost": {"sum": {"field": "price_cents"}},
                },
            }
        },
    }


def active_subscribers_body(seller_id: str, product_ids: List[str], cutoff: datetime) -> Dict[str, Any]:
    """Distinct subscriptions created before `cutoff` and not deactivated before it."""
    query = charged_sales_query(seller_id)
    query["bool"]["must"].append({"exists": {"field": "subscription_id"}})
    query["bool"]["must"].append({"term": {"selected_flags": ORIGINAL_SUBSCRIPTION_FLAG}})
    query["bool"]["filter"].append({"terms": {"product_id": list(product_ids)}})
    query["bool"]["filter"].append({"range": {"created_at": {"lt": cutoff.isoformat()}}})
    query["bool"]["should"] = [
        {"bool": {"must_not": {"exists": {"field": DEACTIVATION_FIELD}}}},
        {"range": {DEACTIVATION_FIELD: {"gte": cutoff.isoformat()}}},
    ]
    query["bool"]["minimum_should_match"] = 1
    return {
        "query": query,
        "size": 0,
        "aggs": {
            "unique_subscriptions": {"cardinality": {"field": "subscription_id", "precision_threshold": CARDINALITY_PRECISION}},
        },
    }


def subscription_sales_query(seller_id: str) -> Dict[str, Any]:
    query = charged_sales_query(seller_id)
    query["bool"]["must"].append({"exists": {"field": "subscription_id"}})
    return query
