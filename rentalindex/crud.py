# rentalindex/crud.py
"""Database access for listings, snapshots, the daily index and job runs.

Upserts use the dialect's ``INSERT ... ON CONFLICT DO UPDATE`` so a re-run
over the same data converges on the same rows. Functions here flush but do
not commit unless noted; callers own the transaction.
"""
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from .db import dialect_insert
from .models import (
    NO_BEDROOMS, NO_DISTRICT, JobRun, Listing, ListingSnapshot, PropertyType,
    RentalIndexDaily, Source,
)
from .parse import reverse_district_aliases
from .query import ListingQuery, build_listing_filters, build_order_by, MAX_LIMIT
from .utils import as_utc

# columns a re-observation refreshes; first_seen_at is never overwritten
LISTING_UPDATE_COLUMNS = (
    "source_listing_id", "content_fingerprint", "title", "description", "city", "district",
    "property_type", "bedrooms", "bathrooms", "size_sqm", "price_monthly_usd",
    "price_original", "currency", "image_urls", "amenities", "posted_at",
    "last_seen_at", "is_active",
)


# ---------- listings ----------

def upsert_listing(db: Session, data: Dict) -> Tuple[int, bool]:
    """Insert-or-update keyed by ``(source, canonical_url)``.

    Returns the listing id and whether the row was newly created.
    """
    existing = db.execute(
        select(Listing.id).where(
            Listing.source == data["source"], Listing.canonical_url == data["canonical_url"]
        )
    ).scalar_one_or_none()

    table = Listing.__table__
    values = dict(data)
    values.setdefault("first_seen_at", values["last_seen_at"])
    values.setdefault("is_active", True)
    insert = dialect_insert(db)
    stmt = insert(table).values(**values)
    update = {c: stmt.excluded[c] for c in LISTING_UPDATE_COLUMNS if c in values}
    update["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(index_elements=["source", "canonical_url"], set_=update)
    db.execute(stmt)

    if existing is not None:
        return existing, False
    listing_id = db.execute(
        select(Listing.id).where(
            Listing.source == data["source"], Listing.canonical_url == data["canonical_url"]
        )
    ).scalar_one()
    return listing_id, True


def add_snapshot(db: Session, listing_id: int, scraped_at: datetime,
                 price_monthly_usd: Optional[float], price_original: Optional[str]) -> ListingSnapshot:
    snap = ListingSnapshot(
        listing_id=listing_id,
        scraped_at=scraped_at,
        price_monthly_usd=price_monthly_usd,
        price_original=price_original,
    )
    db.add(snap)
    db.flush()
    return snap


def get_listing(db: Session, listing_id: int) -> Optional[Listing]:
    return db.get(Listing, listing_id)


def list_snapshots(db: Session, listing_id: int) -> List[ListingSnapshot]:
    return (
        db.query(ListingSnapshot)
        .filter(ListingSnapshot.listing_id == listing_id)
        .order_by(ListingSnapshot.scraped_at.asc(), ListingSnapshot.id.asc())
        .all()
    )


def list_listings(db: Session, q: ListingQuery, page: int = 1, limit: int = 25):
    page = max(1, page)
    limit = min(MAX_LIMIT, max(1, limit))
    conds = build_listing_filters(q)
    query = db.query(Listing)
    if conds:
        query = query.filter(and_(*conds))
    total = query.count()
    items = query.order_by(*build_order_by(q)).offset((page - 1) * limit).limit(limit).all()
    return {"total": total, "items": items, "page": page, "limit": limit}


def known_urls(db: Session, source: Source, limit: int) -> List[Tuple[str, Optional[str]]]:
    """Active listings for ``source``, least recently seen first."""
    rows = db.execute(
        select(Listing.canonical_url, Listing.source_listing_id)
        .where(Listing.source == source, Listing.is_active.is_(True))
        .order_by(Listing.last_seen_at.asc(), Listing.id.asc())
        .limit(limit)
    ).all()
    return [(r[0], r[1]) for r in rows]


def existing_urls(db: Session, source: Source, urls: List[str]) -> set:
    if not urls:
        return set()
    rows = db.execute(
        select(Listing.canonical_url).where(Listing.source == source, Listing.canonical_url.in_(urls))
    ).all()
    return {r[0] for r in rows}


def mark_stale(db: Session, cutoff: datetime) -> Tuple[int, int]:
    """Deactivate active listings last seen before ``cutoff``. Commits."""
    already_inactive = db.query(func.count(Listing.id)).filter(Listing.is_active.is_(False)).scalar()
    deactivated = (
        db.query(Listing)
        .filter(Listing.is_active.is_(True), Listing.last_seen_at < cutoff)
        .update({Listing.is_active: False}, synchronize_session=False)
    )
    db.commit()
    return deactivated, already_inactive


# ---------- index inputs ----------

def listings_active_on(db: Session, day_end: datetime) -> List[Listing]:
    """Active listings first seen no later than ``day_end``."""
    return (
        db.query(Listing)
        .filter(Listing.is_active.is_(True), Listing.first_seen_at <= day_end)
        .all()
    )


def prices_as_of(db: Session, day_end: datetime) -> Dict[int, Optional[float]]:
    """Price of each listing's latest snapshot taken at or before ``day_end``."""
    latest = (
        select(ListingSnapshot.listing_id, func.max(ListingSnapshot.scraped_at).label("at"))
        .where(ListingSnapshot.scraped_at <= day_end)
        .group_by(ListingSnapshot.listing_id)
        .subquery()
    )
    rows = db.execute(
        select(ListingSnapshot.listing_id, ListingSnapshot.price_monthly_usd)
        .join(latest, and_(
            ListingSnapshot.listing_id == latest.c.listing_id,
            ListingSnapshot.scraped_at == latest.c.at,
        ))
        .order_by(ListingSnapshot.id.asc())
    ).all()
    # several snapshots sharing a timestamp: the last written wins
    return {listing_id: price for listing_id, price in rows}


# ---------- daily index ----------

def upsert_index_rows(db: Session, day: date, rows: Iterable[Dict]) -> int:
    """Write one day's segment rows and drop that day's segments that no longer exist. Commits."""
    table = RentalIndexDaily.__table__
    insert = dialect_insert(db)
    keys = set()
    count = 0
    for row in rows:
        values = dict(row, date=day)
        values["district"] = values.get("district") or NO_DISTRICT
        if values.get("bedrooms") is None:
            values["bedrooms"] = NO_BEDROOMS
        keys.add((values["city"], values["district"], values["bedrooms"], PropertyType(values["property_type"])))
        stmt = insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["date", "city", "district", "bedrooms", "property_type"],
            set_={
                "listing_count": stmt.excluded.listing_count,
                "median_price_usd": stmt.excluded.median_price_usd,
                "mean_price_usd": stmt.excluded.mean_price_usd,
                "p25_price_usd": stmt.excluded.p25_price_usd,
                "p75_price_usd": stmt.excluded.p75_price_usd,
                "updated_at": func.now(),
            },
        )
        db.execute(stmt)
        count += 1

    for existing in db.query(RentalIndexDaily).filter(RentalIndexDaily.date == day).all():
        key = (existing.city, existing.district, existing.bedrooms, PropertyType(existing.property_type))
        if key not in keys:
            db.delete(existing)
    db.commit()
    return count


def index_rows(db: Session, city: str, since: Optional[date] = None, district: Optional[str] = None,
               bedrooms: Optional[int] = None, property_types: Optional[List[PropertyType]] = None
               ) -> List[RentalIndexDaily]:
    """Index rows for a city, oldest first."""
    query = db.query(RentalIndexDaily).filter(RentalIndexDaily.city == city)
    if since is not None:
        query = query.filter(RentalIndexDaily.date >= since)
    if district:
        query = query.filter(RentalIndexDaily.district.in_(reverse_district_aliases(district)))
    if bedrooms is not None:
        query = query.filter(RentalIndexDaily.bedrooms == bedrooms)
    if property_types:
        query = query.filter(RentalIndexDaily.property_type.in_(property_types))
    return query.order_by(RentalIndexDaily.date.asc(), RentalIndexDaily.id.asc()).all()


def indexed_districts(db: Session, city: str) -> List[str]:
    rows = db.execute(
        select(RentalIndexDaily.district)
        .where(RentalIndexDaily.city == city, RentalIndexDaily.district != NO_DISTRICT)
        .distinct()
        .order_by(RentalIndexDaily.district)
    ).all()
    return [r[0] for r in rows]


# ---------- job runs ----------

def start_job_run(db: Session, job_type: str, source: Optional[str], started_at: datetime) -> JobRun:
    run = JobRun(job_type=job_type, source=source, status="RUNNING", started_at=started_at)
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def finish_job_run(db: Session, run: JobRun, status: str, ended_at: datetime,
                   counts: Optional[Dict[str, int]] = None, error: Optional[str] = None) -> JobRun:
    run.status = status
    run.ended_at = ended_at
    run.duration_ms = int((as_utc(ended_at) - as_utc(run.started_at)).total_seconds() * 1000)
    for key, value in (counts or {}).items():
        setattr(run, key, value)
    if error:
        run.error_message = error[:2000]
    db.commit()
    return run


def list_job_runs(db: Session, limit: int = 50, job_type: Optional[str] = None) -> List[JobRun]:
    query = db.query(JobRun)
    if job_type:
        query = query.filter(JobRun.job_type == job_type)
    return query.order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(min(MAX_LIMIT, max(1, limit))).all()
