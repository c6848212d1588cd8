from datetime import date

from .models import Granularity


def seller_cache_prefix(seller_id: str, timezone: str, version: str) -> str:
    return f"seller_churn_analytics_v{version}_user_{seller_id}_{timezone}"


def churn_cache_key(seller_id: str, timezone: str, granularity: Granularity, period_date: date, version: str) -> str:
    """
    Cache key for one period.
    Daily   -> one key per YYYY-MM-DD
    Monthly -> one key per YYYY-MM, whichever day of the month is passed
    """
    prefix = seller_cache_prefix(seller_id, timezone, version)
    if granularity == Granularity.MONTHLY:
        return f"{prefix}_churn_monthly_for_{period_date.strftime('%Y-%m')}"
    return f"{prefix}_churn_daily_for_{period_date.isoformat()}"
