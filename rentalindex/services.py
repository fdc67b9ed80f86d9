# rentalindex/services.py
from datetime import datetime
from typing import Tuple

from sqlalchemy.orm import Session

from . import crud
from .fingerprint import compute_fingerprint
from .models import Source
from .schemas import ScrapedListing
from .urls import canonicalize_url
from .utils import logger


def ingest_listing(db: Session, source: Source, url: str, scraped: ScrapedListing,
                   seen_at: datetime) -> Tuple[int, bool]:
    """Upsert one scraped listing and append its price snapshot, in one commit.

    Returns ``(listing_id, inserted)``.
    """
    canonical = canonicalize_url(url)
    fingerprint = None
    if not scraped.source_listing_id:
        fingerprint = compute_fingerprint(
            scraped.title, scraped.district, scraped.bedrooms, scraped.property_type,
            scraped.price_monthly_usd, scraped.image_urls[0] if scraped.image_urls else None,
        )
    data = {
        "source": source,
        "canonical_url": canonical,
        "source_listing_id": scraped.source_listing_id,
        "content_fingerprint": fingerprint,
        "title": scraped.title,
        "description": scraped.description,
        "city": scraped.city,
        "district": scraped.district,
        "property_type": scraped.property_type,
        "bedrooms": scraped.bedrooms,
        "bathrooms": scraped.bathrooms,
        "size_sqm": scraped.size_sqm,
        "price_monthly_usd": scraped.price_monthly_usd,
        "price_original": scraped.price_original,
        "currency": scraped.currency,
        "image_urls": scraped.image_urls,
        "amenities": scraped.amenities,
        "posted_at": scraped.posted_at,
        "last_seen_at": seen_at,
        "is_active": True,
    }
    try:
        listing_id, inserted = crud.upsert_listing(db, data)
        crud.add_snapshot(db, listing_id, seen_at, scraped.price_monthly_usd, scraped.price_original)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.debug("Ingested %s listing %s (%s)", source.value, listing_id, "new" if inserted else "updated")
    return listing_id, inserted
