from enum import Enum
from typing import Dict, List, Optional
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
from pydantic import BaseModel, ConfigDict, Field


class Granularity(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"

    @classmethod
    def from_param(cls, value: Optional[str]) -> "Granularity":
        """Anything other than "monthly" aggregates by day."""
        return cls.MONTHLY if value == cls.MONTHLY.value else cls.DAILY


class CacheStrategy(str, Enum):
    CACHE_ELIGIBLE = "cache_eligible"
    BYPASS = "bypass"


class PeriodStats(BaseModel):
    churned_users: int = Field(default=0, ge=0)
    revenue_lost_cents: int = Field(default=0, ge=0)
    churn_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    active_subscribers: int = Field(default=0, ge=0)


class SummaryStats(BaseModel):
    churned_users: int = 0
    revenue_lost_cents: int = 0
    churn_rate: float = 0.0
    avg_active_base: int = 0

    @classmethod
    def zero(cls) -> "SummaryStats":
        return cls()


class CacheEntry(BaseModel):
    key: str
    data: Dict[str, PeriodStats]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Seller(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    timezone: str = Field(default="UTC")
    created_at: datetime
    first_sale_created_at: Optional[datetime] = Field(default=None)
    is_large_seller: bool = Field(default=False)
    suspended: bool = Field(default=False)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_date(self, value: datetime) -> date:
        return _as_utc(value).astimezone(self.tz).date()

    def today(self) -> date:
        return datetime.now(self.tz).date()

    def first_sale_date(self) -> Optional[date]:
        if self.first_sale_created_at is None:
            return None
        return self.local_date(self.first_sale_created_at)

    def earliest_meaningful_date(self) -> date:
        """First sale date, or the account creation date when nothing was sold yet."""
        return self.first_sale_date() or self.local_date(self.created_at)


class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    seller_id: str
    name: str = Field(default="")
    unique_permalink: str = Field(default="")
    alive: bool = Field(default=True)
    is_recurring_billing: bool = Field(default=False)
    is_tiered_membership: bool = Field(default=False)

    @property
    def is_subscription(self) -> bool:
        return self.is_recurring_billing or self.is_tiered_membership


class ProductProps(BaseModel):
    id: str
    alive: bool
    unique_permalink: str
    name: str


class ChurnPageProps(BaseModel):
    products: List[ProductProps] = Field(default_factory=list)


class ByDateSeries(BaseModel):
    churn_rate: List[float] = Field(default_factory=list)
    churned_users: List[int] = Field(default_factory=list)
    revenue_lost_cents: List[int] = Field(default_factory=list)


class LastPeriodBlock(BaseModel):
    churn_rate: float = 0.0
    churned_users: int = 0
    revenue_lost_cents: int = 0


class TotalBlock(LastPeriodBlock):
    avg_active_base: int = 0


class ChurnPayload(BaseModel):
    dates: List[str]
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    by_date: ByDateSeries
    total: TotalBlock
    last_period: LastPeriodBlock
    first_sale_date: Optional[str] = None


class PurchaseChange(BaseModel):
    seller_id: str
    subscription_id: Optional[str] = None
    created_at: datetime
    subscription_deactivated_at: Optional[datetime] = None


class PurchaseUpdateEvent(BaseModel):
    purchase: PurchaseChange
    changed_fields: List[str] = Field(default_factory=list)
    force: bool = False
