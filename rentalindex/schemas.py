# rentalindex/schemas.py
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import NO_BEDROOMS, NO_DISTRICT, PropertyType, Source
from .utils import as_utc


class CamelModel(BaseModel):
    # wire format is camelCase, Python attributes stay snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @field_validator("*")
    @classmethod
    def _utc_datetimes(cls, value):
        # stored timestamps are UTC; SQLite reads them back naive
        return as_utc(value) if isinstance(value, datetime) else value

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---- adapter records ----

class DiscoveredUrl(CamelModel):
    url: str
    source_listing_id: Optional[str] = None


class ScrapedListing(CamelModel):
    source_listing_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    city: str
    district: Optional[str] = None
    property_type: PropertyType
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    size_sqm: Optional[float] = None
    price_original: Optional[str] = None
    price_monthly_usd: Optional[float] = None
    currency: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)
    posted_at: Optional[datetime] = None


# ---- listing store ----

class ListingOut(CamelModel):
    id: int
    source: Source
    canonical_url: str
    source_listing_id: Optional[str] = None
    title: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    property_type: PropertyType
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    size_sqm: Optional[float] = None
    price_monthly_usd: Optional[float] = None
    price_original: Optional[str] = None
    currency: Optional[str] = None
    image_urls: Optional[List[str]] = None
    amenities: Optional[List[str]] = None
    posted_at: Optional[datetime] = None
    first_seen_at: datetime
    last_seen_at: datetime
    is_active: bool


class ListingDetail(ListingOut):
    description: Optional[str] = None


class ListingPage(CamelModel):
    listings: List[ListingOut]
    total: int
    page: int
    limit: int
    total_pages: int


class SnapshotOut(CamelModel):
    id: int
    listing_id: int
    scraped_at: datetime
    price_monthly_usd: Optional[float] = None
    price_original: Optional[str] = None


class JobRunOut(CamelModel):
    id: int
    job_type: str
    source: Optional[str] = None
    status: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    discovered_count: Optional[int] = None
    processed_count: Optional[int] = None
    inserted_count: Optional[int] = None
    updated_count: Optional[int] = None
    snapshot_count: Optional[int] = None
    failed_count: Optional[int] = None
    index_rows_count: Optional[int] = None
    error_message: Optional[str] = None


# ---- index + analytics ----

class IndexRow(CamelModel):
    date: date
    city: str
    district: Optional[str] = None
    bedrooms: Optional[int] = None
    property_type: PropertyType
    listing_count: int
    median_price_usd: Optional[float] = None
    mean_price_usd: Optional[float] = None
    p25_price_usd: Optional[float] = None
    p75_price_usd: Optional[float] = None

    @classmethod
    def from_model(cls, row) -> "IndexRow":
        return cls(
            date=row.date,
            city=row.city,
            district=None if row.district == NO_DISTRICT else row.district,
            bedrooms=None if row.bedrooms == NO_BEDROOMS else row.bedrooms,
            property_type=row.property_type,
            listing_count=row.listing_count,
            median_price_usd=row.median_price_usd,
            mean_price_usd=row.mean_price_usd,
            p25_price_usd=row.p25_price_usd,
            p75_price_usd=row.p75_price_usd,
        )


class KpiSummary(CamelModel):
    current_median: Optional[float] = None
    current_1bed: Optional[float] = Field(default=None, alias="current1Bed")
    current_2bed: Optional[float] = Field(default=None, alias="current2Bed")
    total_listings: int = 0
    change_1m: Optional[float] = Field(default=None, alias="change1m")
    change_3m: Optional[float] = Field(default=None, alias="change3m")
    volatility: float = 0.0
    volatility_score: int = 0
    supply_signal: str = "neutral"


class TrendPoint(CamelModel):
    date: str
    median: Optional[float] = None
    mean: Optional[float] = None
    p25: Optional[float] = None
    p75: Optional[float] = None
    listing_count: int = 0
    ma90: Optional[float] = None


class DistributionBucket(CamelModel):
    label: str
    min: float
    max: Optional[float] = None
    count: int = 0
    percentage: float = 0.0


class MoverRow(CamelModel):
    rank: int
    district: str
    change_1m: Optional[float] = Field(default=None, alias="change1m")
    change_3m: Optional[float] = Field(default=None, alias="change3m")
    median: Optional[float] = None
    volatility: float = 0.0
    listing_count: int = 0


class HeatmapDistrictRow(CamelModel):
    district: str
    listing_count: int
    median_price_usd: Optional[float] = None


class VolatilityPoint(CamelModel):
    date: str
    volatility: float
    window_size: int


class DistrictVolatility(CamelModel):
    district: str
    volatility: float
    data_points: int


# ---- job results ----

class DiscoverResult(CamelModel):
    job_run_id: Optional[int] = None
    source: Source
    discovered: int = 0
    pages_visited: int = 0
    urls: List[DiscoveredUrl] = Field(default_factory=list, exclude=True)


class ProcessQueueResult(CamelModel):
    job_run_id: Optional[int] = None
    source: Source
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    snapshots: int = 0
    skipped: int = 0
    failed: int = 0


class BuildIndexResult(CamelModel):
    job_run_id: Optional[int] = None
    dates: List[date] = Field(default_factory=list)
    index_rows: int = 0


class MarkStaleResult(CamelModel):
    deactivated: int = 0
    already_inactive: int = 0
    cutoff_date: datetime


class RunAllResult(CamelModel):
    discover: Dict[str, DiscoverResult] = Field(default_factory=dict)
    process: Dict[str, ProcessQueueResult] = Field(default_factory=dict)
    failed_sources: Dict[str, str] = Field(default_factory=dict)
    index: Optional[BuildIndexResult] = None
