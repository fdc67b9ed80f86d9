# rentalindex/models.py
"""SQLAlchemy ORM models for persisted entities.

Listings hold the current state of each ad, snapshots are the append-only
price history, and ``RentalIndexDaily`` holds per-segment daily aggregates.
"""
import enum
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, Date, TIMESTAMP, Enum, ForeignKey,
    JSON, UniqueConstraint, Index, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .db import Base


class Source(str, enum.Enum):
    KHMER24 = "KHMER24"
    REALESTATE_KH = "REALESTATE_KH"
    IPS_CAMBODIA = "IPS_CAMBODIA"


class PropertyType(str, enum.Enum):
    CONDO = "CONDO"
    APARTMENT = "APARTMENT"
    VILLA = "VILLA"
    TOWNHOUSE = "TOWNHOUSE"
    SERVICED_APARTMENT = "SERVICED_APARTMENT"
    PENTHOUSE = "PENTHOUSE"
    OTHER = "OTHER"


JsonType = JSON().with_variant(JSONB, "postgresql")

# index key sentinels for "no district" / "no bedroom count"
NO_DISTRICT = ""
NO_BEDROOMS = -1


class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (UniqueConstraint("source", "canonical_url", name="uq_listing_source_url"),)

    id = Column(Integer, primary_key=True, index=True)
    source = Column(Enum(Source, native_enum=False, length=32), nullable=False, index=True)
    canonical_url = Column(Text, nullable=False)
    source_listing_id = Column(Text)
    content_fingerprint = Column(Text, index=True)
    title = Column(Text)
    description = Column(Text)
    city = Column(Text)
    district = Column(Text, index=True)
    property_type = Column(Enum(PropertyType, native_enum=False, length=32), nullable=False)
    bedrooms = Column(Integer)
    bathrooms = Column(Integer)
    size_sqm = Column(Float)
    price_monthly_usd = Column(Float)
    price_original = Column(Text)
    currency = Column(Text)
    image_urls = Column(JsonType)
    amenities = Column(JsonType)
    posted_at = Column(TIMESTAMP(timezone=True))
    first_seen_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_seen_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    snapshots = relationship(
        "ListingSnapshot", back_populates="listing", order_by="ListingSnapshot.scraped_at"
    )


class ListingSnapshot(Base):
    __tablename__ = "listing_snapshots"
    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False, index=True)
    scraped_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    price_monthly_usd = Column(Float)
    price_original = Column(Text)

    listing = relationship("Listing", back_populates="snapshots")


class RentalIndexDaily(Base):
    __tablename__ = "rental_index_daily"
    __table_args__ = (
        UniqueConstraint(
            "date", "city", "district", "bedrooms", "property_type", name="uq_index_segment_day"
        ),
    )
    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, index=True)
    city = Column(Text, nullable=False)
    district = Column(Text, nullable=False, default=NO_DISTRICT)
    bedrooms = Column(Integer, nullable=False, default=NO_BEDROOMS)
    property_type = Column(Enum(PropertyType, native_enum=False, length=32), nullable=False)
    listing_count = Column(Integer, nullable=False, default=0)
    median_price_usd = Column(Float)
    mean_price_usd = Column(Float)
    p25_price_usd = Column(Float)
    p75_price_usd = Column(Float)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())


class JobRun(Base):
    __tablename__ = "job_runs"
    id = Column(Integer, primary_key=True)
    job_type = Column(Text, nullable=False)
    source = Column(Text)
    status = Column(Text, nullable=False, default="RUNNING")
    started_at = Column(TIMESTAMP(timezone=True), nullable=False)
    ended_at = Column(TIMESTAMP(timezone=True))
    duration_ms = Column(Integer)
    discovered_count = Column(Integer, default=0)
    processed_count = Column(Integer, default=0)
    inserted_count = Column(Integer, default=0)
    updated_count = Column(Integer, default=0)
    snapshot_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    index_rows_count = Column(Integer, default=0)
    error_message = Column(Text)

Index("idx_listings_price", Listing.price_monthly_usd)
Index("idx_index_city_date", RentalIndexDaily.city, RentalIndexDaily.date)
