from core.config import ES_PURCHASES_INDEX

PURCHASES_INDEX_BODY = {
    "mappings": {
        "properties": {
            "seller_id": {"type": "keyword"},
            "product_id": {"type": "keyword"},
            "subscription_id": {"type": "keyword"},
            "price_cents": {"type": "long"},
            "purchase_state": {"type": "keyword"},
            "selected_flags": {"type": "keyword"},
            "stripe_refunded": {"type": "boolean"},
            "created_at": {"type": "date"},
            "subscription_deactivated_at": {"type": "date"},
            "chargeback_date": {"type": "date"},
        }
    }
}

ES_SCHEMA = [
    {
        "index": ES_PURCHASES_INDEX,
        "schema": PURCHASES_INDEX_BODY,
    },
]
