# rentalindex/jobs/build_index.py
"""Daily index builder.

For each target date, every listing active and first seen by the end of
that day is priced at its latest snapshot taken by then and grouped by
``(city, district, bedrooms, property_type)``. Rebuilding a date rewrites
that date's rows, so repeating a build is harmless.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from .. import config, crud
from ..analytics import percentile
from ..db import SessionLocal
from ..events import JobReporter
from ..schemas import BuildIndexResult
from ..utils import utcnow
from .locks import exclusive
from .runs import recorded_run


def default_dates(today: Optional[date] = None) -> List[date]:
    # yesterday is rebuilt too so late scrapes still land in the index
    today = today or utcnow().date()
    return [today - timedelta(days=1), today]


def _stat(value):
    return None if value is None else round(value, 2)


def compute_index_rows(db: Session, day: date) -> List[Dict]:
    day_end = datetime.combine(day, time.max, tzinfo=timezone.utc)
    listings = crud.listings_active_on(db, day_end)
    prices = crud.prices_as_of(db, day_end)

    groups: Dict[tuple, list] = {}
    for listing in listings:
        # a listing without snapshots falls back to its current price
        price = prices[listing.id] if listing.id in prices else listing.price_monthly_usd
        key = (listing.city or config.DEFAULT_CITY, listing.district, listing.bedrooms, listing.property_type)
        groups.setdefault(key, []).append(price)

    rows = []
    for (city, district, bedrooms, property_type), group in groups.items():
        values = sorted(p for p in group if p is not None)
        rows.append({
            "city": city,
            "district": district,
            "bedrooms": bedrooms,
            "property_type": property_type,
            "listing_count": len(group),
            "median_price_usd": _stat(percentile(values, 0.5)),
            "mean_price_usd": _stat(sum(values) / len(values)) if values else None,
            "p25_price_usd": _stat(percentile(values, 0.25)),
            "p75_price_usd": _stat(percentile(values, 0.75)),
        })
    return rows


def build_index_job(dates: Optional[Sequence[date]] = None, reporter: Optional[JobReporter] = None,
                    session_factory=SessionLocal) -> BuildIndexResult:
    dates = sorted(set(dates or default_dates()))
    reporter = (reporter or JobReporter()).for_stage("index")

    with exclusive("build-index", None, reporter), \
            recorded_run(session_factory, "BUILD_INDEX", None, reporter) as (db, run, counts):
        result = BuildIndexResult(job_run_id=run.id, dates=dates)
        for i, day in enumerate(dates):
            reporter.check_cancelled()
            reporter.progress("index", i * 100.0 / len(dates), f"Building {day.isoformat()}")
            rows = compute_index_rows(db, day)
            written = crud.upsert_index_rows(db, day, rows)
            result.index_rows += written
            counts["index_rows_count"] = result.index_rows
            reporter.info(f"{day.isoformat()}: {written} index rows", {"date": day.isoformat(), "rows": written})
        reporter.progress("index", 100, f"{result.index_rows} rows written")
        return result
