import os

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "churnanalyticsSecret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "")

# search backend
ES_PURCHASES_INDEX = os.getenv("ES_PURCHASES_INDEX", "purchases")
ES_MAX_BUCKET_SIZE = int(os.getenv("ES_MAX_BUCKET_SIZE", "1000"))
ES_REQUEST_TIMEOUT_SEC = int(os.getenv("ES_REQUEST_TIMEOUT_SEC", "60"))

# cache store
CHURN_CACHE_COLLECTION = os.getenv("CHURN_CACHE_COLLECTION", "computed_churn_analytics")
CHURN_REGENERATION_COLLECTION = os.getenv("CHURN_REGENERATION_COLLECTION", "churn_regeneration_jobs")

# today and the day before are never cached
CHURN_LIVE_WINDOW_DAYS = int(os.getenv("CHURN_LIVE_WINDOW_DAYS", "2"))
CHURN_DEFAULT_WINDOW_DAYS = int(os.getenv("CHURN_DEFAULT_WINDOW_DAYS", "30"))

# background regeneration
CHURN_REGENERATION_DELAY_SEC = int(os.getenv("CHURN_REGENERATION_DELAY_SEC", "2"))
CHURN_REGENERATION_MAX_ATTEMPTS = int(os.getenv("CHURN_REGENERATION_MAX_ATTEMPTS", "2"))
CHURN_REGENERATION_TIMEOUT_SEC = int(os.getenv("CHURN_REGENERATION_TIMEOUT_SEC", "1200"))
CHURN_CACHE_SELLER_CONCURRENCY = int(os.getenv("CHURN_CACHE_SELLER_CONCURRENCY", "3"))


def get_cache_version() -> str:
    """Global churn cache format version. Read on every call so a bump takes effect without a restart."""
    return os.getenv("CHURN_ANALYTICS_CACHE_VERSION", "0")
