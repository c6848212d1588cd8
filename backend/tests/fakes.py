"""
In-memory stand-in for AsyncElasticsearch.

Evaluates the subset of the query DSL the churn engine emits (bool, term,
terms, exists, range, match_all) plus composite date_histogram, sum and
cardinality aggregations, so engine code runs unchanged on top of it.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

ORIGINAL_SUBSCRIPTION_FLAG = "is_original_subscription_purchase"

HISTOGRAM_FORMATS = {
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
}


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _compare(value, op: str, bound) -> bool:
    if isinstance(bound, (str, datetime)):
        value, bound = _parse_datetime(value), _parse_datetime(bound)
    if op == "gte":
        return value >= bound
    if op == "gt":
        return value > bound
    if op == "lte":
        return value <= bound
    if op == "lt":
        return value < bound
    raise NotImplementedError(f"range operator {op}")


def matches(doc: dict, query: Optional[dict]) -> bool:
    if not query:
        return True
    (kind, body), = query.items()

    if kind == "match_all":
        return True
    if kind == "exists":
        return bool(_as_list(doc.get(body["field"])))
    if kind == "term":
        (field, value), = body.items()
        if isinstance(value, dict):
            value = value["value"]
        return value in _as_list(doc.get(field))
    if kind == "terms":
        (field, values), = body.items()
        return any(value in values for value in _as_list(doc.get(field)))
    if kind == "range":
        (field, bounds), = body.items()
        return any(
            all(_compare(value, op, bound) for op, bound in bounds.items())
            for value in _as_list(doc.get(field))
        )
    if kind == "bool":
        required = _as_list(body.get("must")) + _as_list(body.get("filter"))
        if not all(matches(doc, clause) for clause in required):
            return False
        if any(matches(doc, clause) for clause in _as_list(body.get("must_not"))):
            return False
        should = _as_list(body.get("should"))
        if should:
            minimum = body.get("minimum_should_match", 0 if required else 1)
            if sum(1 for clause in should if matches(doc, clause)) < minimum:
                return False
        return True
    raise NotImplementedError(f"query type {kind}")


def _histogram_key(doc: dict, histogram: dict) -> Optional[str]:
    value = doc.get(histogram["field"])
    if value is None:
        return None
    local = _parse_datetime(value).astimezone(ZoneInfo(histogram.get("time_zone", "UTC")))
    return local.strftime(HISTOGRAM_FORMATS[histogram["calendar_interval"]])


def _composite(docs: List[dict], agg: dict) -> dict:
    composite = agg["composite"]
    groups: Dict[tuple, List[dict]] = {}
    for doc in docs:
        key = []
        for source in composite["sources"]:
            (source_name, source_def), = source.items()
            value = _histogram_key(doc, source_def["date_histogram"])
            if value is None:
                break
            key.append((source_name, value))
        else:
            groups.setdefault(tuple(key), []).append(doc)

    ordered = sorted(groups)
    after = composite.get("after")
    if after:
        after_key = tuple((name, after[name]) for name, _ in ordered[0]) if ordered else ()
        ordered = [key for key in ordered if key > after_key]

    buckets = []
    for key in ordered[:composite.get("size", 10)]:
        bucket_docs = groups[key]
        bucket = {"key": dict(key), "doc_count": len(bucket_docs)}
        for sub_name, sub_agg in agg.get("aggs", {}).items():
            field = sub_agg["sum"]["field"]
            bucket[sub_name] = {"value": float(sum(doc.get(field) or 0 for doc in bucket_docs))}
        buckets.append(bucket)

    result = {"buckets": buckets}
    if buckets:
        result["after_key"] = buckets[-1]["key"]
    return result


def _aggregate(docs: List[dict], aggs: dict) -> dict:
    results = {}
    for name, agg in aggs.items():
        if "composite" in agg:
            results[name] = _composite(docs, agg)
        elif "cardinality" in agg:
            field = agg["cardinality"]["field"]
            distinct = {value for doc in docs for value in _as_list(doc.get(field))}
            results[name] = {"value": len(distinct)}
        else:
            raise NotImplementedError(f"aggregation {name}: {agg}")
    return results


class FakeIndices:
    def __init__(self):
        self.created = {}

    async def exists(self, index: str) -> bool:
        return index in self.created

    async def create(self, index: str, **body):
        self.created[index] = body


class FakeElasticsearch:
    def __init__(self):
        self.docs: Dict[str, List[dict]] = {}
        self.indices = FakeIndices()
        self.searches: List[dict] = []
        self.error: Optional[Exception] = None
        # when set, searches block until the event fires
        self.gate: Optional[asyncio.Event] = None
        # raise `error` only once this many searches succeeded
        self.fail_after = 0

    def add(self, index: str, doc: dict):
        self.docs.setdefault(index, []).append(doc)

    async def ping(self) -> bool:
        return True

    async def close(self):
        pass

    async def search(self, index: str, query: Optional[dict] = None, size: int = 10, aggs: Optional[dict] = None, **kwargs):
        if self.error is not None and len(self.searches) >= self.fail_after:
            raise self.error
        self.searches.append({"index": index, "query": query, "size": size, "aggs": aggs})
        if self.gate is not None:
            await self.gate.wait()
        hits = [doc for doc in self.docs.get(index, []) if matches(doc, query)]
        return {
            "hits": {"total": {"value": len(hits)}, "hits": [{"_source": doc} for doc in hits[:size]]},
            "aggregations": _aggregate(hits, aggs or {}),
        }

    async def count(self, index: str, query: Optional[dict] = None, **kwargs):
        if self.error is not None:
            raise self.error
        return {"count": sum(1 for doc in self.docs.get(index, []) if matches(doc, query))}


def _iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, 12, tzinfo=timezone.utc)
    return _parse_datetime(value).isoformat()


def purchase_doc(
    seller_id: str,
    product_id: str,
    subscription_id: Optional[str],
    created_at,
    deactivated_at=None,
    price_cents: int = 1000,
    purchase_state: str = "successful",
    flags=(ORIGINAL_SUBSCRIPTION_FLAG,),
    chargeback_date=None,
) -> dict:
    """Purchase document as indexed; plain dates land at noon UTC."""
    return {
        "seller_id": seller_id,
        "product_id": product_id,
        "subscription_id": subscription_id,
        "price_cents": price_cents,
        "purchase_state": purchase_state,
        "selected_flags": list(flags),
        "stripe_refunded": False,
        "created_at": _iso(created_at),
        "subscription_deactivated_at": _iso(deactivated_at),
        "chargeback_date": _iso(chargeback_date),
    }
