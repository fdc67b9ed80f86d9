# tests/test_build_index.py
from datetime import date, timedelta

from conftest import utc
from rentalindex import analytics, crud
from rentalindex.jobs.build_index import build_index_job, compute_index_rows, default_dates
from rentalindex.models import JobRun, PropertyType, RentalIndexDaily, Source
from rentalindex.schemas import IndexRow, ScrapedListing
from rentalindex.services import ingest_listing

DAY = date(2025, 3, 1)
SEEN = utc(2025, 3, 1, 10, 0)


def add(db, n, price, district="BKK1", bedrooms=1, seen=SEEN, property_type=PropertyType.CONDO):
    item = ScrapedListing(
        title=f"Condo {n}", city="Phnom Penh", district=district, property_type=property_type,
        bedrooms=bedrooms, price_monthly_usd=price, price_original=None if price is None else f"${price}",
    )
    url = f"https://ips-cambodia.com/listing-details/rental/{n}-condo/"
    listing_id, _ = ingest_listing(db, Source.IPS_CAMBODIA, url, item, seen)
    return listing_id


def index_table(db):
    return sorted(
        (r.date, r.city, r.district, r.bedrooms, r.property_type, r.listing_count,
         r.median_price_usd, r.mean_price_usd, r.p25_price_usd, r.p75_price_usd)
        for r in db.query(RentalIndexDaily).all()
    )


def test_segment_statistics(db):
    for n, price in enumerate([300.0, 400.0, 500.0], start=1):
        add(db, n, price)
    rows = compute_index_rows(db, DAY)
    assert len(rows) == 1
    r = rows[0]
    assert (r["city"], r["district"], r["bedrooms"], r["property_type"]) == (
        "Phnom Penh", "BKK1", 1, PropertyType.CONDO)
    assert r["listing_count"] == 3
    assert r["median_price_usd"] == 400.0
    assert r["mean_price_usd"] == 400.0
    assert r["p25_price_usd"] == 350.0
    assert r["p75_price_usd"] == 450.0


def test_build_is_idempotent(db, session_factory):
    for n, price in enumerate([300.0, 400.0, 500.0, None], start=1):
        add(db, n, price, district=None if n == 4 else "BKK1")
    first = build_index_job([DAY], session_factory=session_factory)
    before = index_table(db)
    second = build_index_job([DAY], session_factory=session_factory)
    db.expire_all()
    assert index_table(db) == before
    assert first.index_rows == second.index_rows == 2
    assert db.query(RentalIndexDaily).count() == 2
    runs = db.query(JobRun).filter(JobRun.job_type == "BUILD_INDEX").all()
    assert [r.status for r in runs] == ["SUCCESS", "SUCCESS"]
    assert runs[0].index_rows_count == 2


def test_null_prices_count_but_do_not_price(db):
    add(db, 1, 600.0)
    add(db, 2, None)
    (row,) = compute_index_rows(db, DAY)
    assert row["listing_count"] == 2
    assert row["median_price_usd"] == 600.0


def test_missing_district_and_bedrooms_round_trip_as_none(db, session_factory):
    add(db, 1, 450.0, district=None, bedrooms=None)
    build_index_job([DAY], session_factory=session_factory)
    stored = db.query(RentalIndexDaily).one()
    assert stored.district == ""
    assert stored.bedrooms == -1
    row = IndexRow.from_model(stored)
    assert row.district is None
    assert row.bedrooms is None


def test_price_as_of_the_build_date(db):
    listing_id = add(db, 1, 500.0)
    add(db, 1, 650.0, seen=SEEN + timedelta(days=1))
    assert compute_index_rows(db, DAY)[0]["median_price_usd"] == 500.0
    assert compute_index_rows(db, DAY + timedelta(days=1))[0]["median_price_usd"] == 650.0
    assert len(crud.list_snapshots(db, listing_id)) == 2


def test_listings_not_yet_seen_or_inactive_are_left_out(db):
    add(db, 1, 500.0)
    add(db, 2, 900.0, seen=SEEN + timedelta(days=3))
    assert compute_index_rows(db, DAY)[0]["listing_count"] == 1
    crud.mark_stale(db, SEEN + timedelta(days=1))
    assert [r["listing_count"] for r in compute_index_rows(db, DAY + timedelta(days=3))] == [1]


def test_rebuild_drops_segments_that_disappeared(db, session_factory):
    add(db, 1, 500.0, bedrooms=1)
    add(db, 2, 900.0, bedrooms=2, seen=utc(2025, 2, 1))
    build_index_job([DAY], session_factory=session_factory)
    assert db.query(RentalIndexDaily).count() == 2
    crud.mark_stale(db, utc(2025, 2, 15))
    build_index_job([DAY], session_factory=session_factory)
    db.expire_all()
    assert [r.bedrooms for r in db.query(RentalIndexDaily).all()] == [1]


def test_three_bkk1_listings_end_to_end(db, session_factory):
    for n, price in enumerate([300.0, 400.0, 500.0], start=1):
        add(db, n, price)
    build_index_job([DAY], session_factory=session_factory)
    rows = [IndexRow.from_model(r) for r in crud.index_rows(db, "Phnom Penh")]

    buckets = {b.label: b for b in analytics.compute_distribution(rows)}
    low_mid = buckets["$0 - $300"].count + buckets["$300 - $500"].count
    assert low_mid == 3
    assert buckets["$0 - $300"].percentage + buckets["$300 - $500"].percentage == 100.0

    heatmap = analytics.compute_district_heatmap(rows)
    assert heatmap[0].district == "BKK1"
    assert heatmap[0].listing_count == 3
    assert heatmap[0].median_price_usd == 400


def test_default_dates_are_yesterday_and_today():
    assert default_dates(DAY) == [DAY - timedelta(days=1), DAY]
