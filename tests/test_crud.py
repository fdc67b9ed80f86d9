# tests/test_crud.py
from datetime import timedelta

import pytest

from conftest import utc
from rentalindex import crud
from rentalindex.models import Listing, PropertyType, Source
from rentalindex.query import InvalidFilter, ListingQuery
from rentalindex.schemas import ScrapedListing
from rentalindex.services import ingest_listing

NOW = utc(2025, 3, 1, 9, 0)


def scraped(title="2 Bedroom Condo BKK1", price=800.0, district="BKK1", **kw):
    data = dict(
        title=title, city="Phnom Penh", district=district, property_type=PropertyType.CONDO,
        bedrooms=2, bathrooms=2, size_sqm=80.0, price_original=f"${price}", price_monthly_usd=price,
        currency="USD", image_urls=["https://cdn.example.com/a.jpg"], amenities=["Gym"],
    )
    data.update(kw)
    return ScrapedListing(**data)


def test_upsert_and_get(db):
    url = "https://www.realestate.com.kh/rent/bkk-1/2-bed-condo-259490/?utm_source=x"
    listing_id, inserted = ingest_listing(db, Source.REALESTATE_KH, url, scraped(source_listing_id="259490"), NOW)
    assert inserted
    obj = crud.get_listing(db, listing_id)
    assert obj is not None
    assert obj.title == "2 Bedroom Condo BKK1"
    assert obj.canonical_url == "https://realestate.com.kh/rent/bkk-1/2-bed-condo-259490"
    assert obj.is_active
    assert obj.image_urls == ["https://cdn.example.com/a.jpg"]
    # an id from the source makes the fingerprint unnecessary
    assert obj.content_fingerprint is None


def test_reobservation_updates_in_place_and_appends_snapshot(db):
    url = "https://ips-cambodia.com/listing-details/rental/101-condo-bkk1/"
    first_id, inserted = ingest_listing(db, Source.IPS_CAMBODIA, url, scraped(price=800.0), NOW)
    later = NOW + timedelta(days=2)
    second_id, inserted_again = ingest_listing(db, Source.IPS_CAMBODIA, url, scraped(price=750.0), later)

    assert inserted and not inserted_again
    assert first_id == second_id
    assert db.query(Listing).count() == 1

    db.expire_all()
    obj = crud.get_listing(db, first_id)
    assert obj.price_monthly_usd == 750.0
    assert obj.first_seen_at.replace(tzinfo=None) == NOW.replace(tzinfo=None)
    assert obj.last_seen_at.replace(tzinfo=None) == later.replace(tzinfo=None)
    snaps = crud.list_snapshots(db, first_id)
    assert [s.price_monthly_usd for s in snaps] == [800.0, 750.0]


def test_unchanged_price_still_snapshots(db):
    url = "https://ips-cambodia.com/listing-details/rental/102-condo/"
    listing_id, _ = ingest_listing(db, Source.IPS_CAMBODIA, url, scraped(), NOW)
    ingest_listing(db, Source.IPS_CAMBODIA, url, scraped(), NOW + timedelta(hours=1))
    assert len(crud.list_snapshots(db, listing_id)) == 2


def test_fingerprint_without_source_id(db):
    listing_id, _ = ingest_listing(db, Source.KHMER24, "https://www.khmer24.com/en/x-1234.html", scraped(), NOW)
    assert len(crud.get_listing(db, listing_id).content_fingerprint) == 64


def seed_listings(db):
    rows = [
        ("https://ips-cambodia.com/listing-details/rental/1-a/", scraped("Condo in BKK 1", 500.0, "BKK1")),
        ("https://ips-cambodia.com/listing-details/rental/2-b/", scraped(
            "Villa Toul Kork", 2500.0, "Toul Kork", property_type=PropertyType.VILLA)),
        ("https://ips-cambodia.com/listing-details/rental/3-c/", scraped(
            "Serviced apartment Daun Penh", 900.0, "Daun Penh", property_type=PropertyType.SERVICED_APARTMENT)),
    ]
    ids = []
    for i, (url, item) in enumerate(rows):
        listing_id, _ = ingest_listing(db, Source.IPS_CAMBODIA, url, item, NOW + timedelta(minutes=i))
        ids.append(listing_id)
    ingest_listing(db, Source.REALESTATE_KH, "https://www.realestate.com.kh/rent/bkk-1/c-123456/",
                   scraped("Condo BKK1 realestate", 700.0, "bkk 1", source_listing_id="123456"), NOW)
    return ids


def test_list_listings_filters(db):
    seed_listings(db)
    assert crud.list_listings(db, ListingQuery())["total"] == 4
    assert crud.list_listings(db, ListingQuery(source="ips_cambodia"))["total"] == 3

    # the long-term alias covers villas and condos but not serviced apartments
    long_term = crud.list_listings(db, ListingQuery(property_type="LONG_TERM"))
    assert long_term["total"] == 3

    # district filter matches stored alias spellings too
    bkk1 = crud.list_listings(db, ListingQuery(district="BKK1"))
    assert sorted(l.district for l in bkk1["items"]) == ["BKK1", "bkk 1"]

    found = crud.list_listings(db, ListingQuery(search="villa"))
    assert [l.title for l in found["items"]] == ["Villa Toul Kork"]


def test_list_listings_sort_and_paging(db):
    seed_listings(db)
    res = crud.list_listings(db, ListingQuery(sort="priceMonthlyUsd", order="asc"), page=1, limit=2)
    assert [l.price_monthly_usd for l in res["items"]] == [500.0, 700.0]
    assert res["total"] == 4
    res = crud.list_listings(db, ListingQuery(sort="priceMonthlyUsd", order="asc"), page=2, limit=2)
    assert [l.price_monthly_usd for l in res["items"]] == [900.0, 2500.0]
    # unknown sort fields fall back to lastSeenAt
    assert crud.list_listings(db, ListingQuery(sort="password"))["total"] == 4


def test_invalid_filters(db):
    with pytest.raises(InvalidFilter):
        crud.list_listings(db, ListingQuery(source="craigslist"))
    with pytest.raises(InvalidFilter):
        crud.list_listings(db, ListingQuery(property_type="castle"))


def test_known_and_existing_urls(db):
    seed_listings(db)
    known = crud.known_urls(db, Source.IPS_CAMBODIA, limit=2)
    assert [u for u, _ in known] == [
        "https://ips-cambodia.com/listing-details/rental/1-a",
        "https://ips-cambodia.com/listing-details/rental/2-b",
    ]
    existing = crud.existing_urls(db, Source.IPS_CAMBODIA, [
        "https://ips-cambodia.com/listing-details/rental/1-a",
        "https://ips-cambodia.com/listing-details/rental/9-new",
    ])
    assert existing == {"https://ips-cambodia.com/listing-details/rental/1-a"}


def test_mark_stale_soft_deletes(db):
    ids = seed_listings(db)
    ingest_listing(db, Source.IPS_CAMBODIA, "https://ips-cambodia.com/listing-details/rental/1-a/",
                   scraped("Condo in BKK 1", 500.0, "BKK1"), NOW + timedelta(days=10))
    deactivated, already = crud.mark_stale(db, NOW + timedelta(days=7))
    assert (deactivated, already) == (3, 0)
    db.expire_all()
    assert crud.get_listing(db, ids[0]).is_active
    assert not crud.get_listing(db, ids[1]).is_active
    # history is kept
    assert len(crud.list_snapshots(db, ids[1])) == 1
    assert crud.mark_stale(db, NOW + timedelta(days=7)) == (0, 3)


def test_job_run_lifecycle(db):
    run = crud.start_job_run(db, "DISCOVER", "KHMER24", NOW)
    assert run.status == "RUNNING"
    crud.finish_job_run(db, run, "FAILED", NOW + timedelta(seconds=2), {"discovered_count": 5}, "x" * 5000)
    runs = crud.list_job_runs(db)
    assert len(runs) == 1
    assert runs[0].status == "FAILED"
    assert runs[0].duration_ms == 2000
    assert runs[0].discovered_count == 5
    assert len(runs[0].error_message) == 2000
