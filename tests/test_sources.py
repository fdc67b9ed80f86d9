# tests/test_sources.py
import pytest

from conftest import FakeFetcher
from rentalindex.errors import SourceDisabledError, UnknownSourceError
from rentalindex.events import EventChannel, JobReporter, ProgressEvent
from rentalindex.models import PropertyType, Source
from rentalindex.sources import ips_cambodia, khmer24, realestate_kh
from rentalindex.sources.base import crawl_category_pages, location_from_title, make_soup, spec_fields
from rentalindex.sources.registry import get_adapter, parse_source

IPS_PAGE_1 = """
<html><body>
  <a href="/listing-details/rental/101-two-bed-condo-bkk1/">Condo</a>
  <a href="/listing-details/rental/101-two-bed-condo-bkk1/?utm_source=fb">Condo again</a>
  <a href="https://www.ips-cambodia.com/listing-details/rental/102-villa-toul-kork/">Villa</a>
  <a href="/rent/?paging=2">Next</a>
  <a href="/about-us/">About</a>
</body></html>
"""
IPS_PAGE_2 = """
<html><body>
  <a href="/listing-details/rental/102-villa-toul-kork/">Villa</a>
  <a href="/listing-details/commercial/103-office-bkk2/">Office</a>
</body></html>
"""
IPS_PAGE_3 = """
<html><body><a href="/listing-details/rental/101-two-bed-condo-bkk1/">Condo</a></body></html>
"""

IPS_LISTING = """
<html><head>
  <meta property="og:image" content="https://ips-cambodia.com/wp-content/uploads/101-main.jpg">
  <script type="application/ld+json">{"@type": "Residence", "datePosted": "2025-02-20"}</script>
</head><body>
  <h1>2 Bedroom Condo For Rent - BKK 1, Phnom Penh</h1>
  <div class="listing-price">$1,200 / month</div>
  <div class="property-location">Boeung Keng Kang 1, Chamkarmon, Phnom Penh</div>
  <ul class="property-specs">
    <li>Bedrooms: 2</li><li>Bathrooms: 2</li><li>Size: 95 sqm</li>
  </ul>
  <div class="property-description">Bright condo with swimming pool and gym. Fully furnished.</div>
  <div class="gallery">
    <img src="https://ips-cambodia.com/wp-content/uploads/101-main.jpg">
    <img src="https://ips-cambodia.com/wp-content/uploads/101-b.jpg">
    <img src="https://ips-cambodia.com/wp-content/uploads/101-b-150x150.jpg">
  </div>
</body></html>
"""

IPS_URL = "https://ips-cambodia.com/listing-details/rental/101-two-bed-condo-bkk1"


def ips_adapter(pages):
    return ips_cambodia.IpsCambodiaAdapter(reporter=JobReporter(stage="discover"), fetcher=FakeFetcher(pages))


def test_discover_dedups_across_pages():
    adapter = ips_adapter({
        "https://ips-cambodia.com/rent/": IPS_PAGE_1,
        "https://ips-cambodia.com/rent/?paging=2": IPS_PAGE_2,
        "https://ips-cambodia.com/rent/?paging=3": IPS_PAGE_3,
    })
    urls = adapter.discover()
    assert [u.url for u in urls] == [
        IPS_URL,
        "https://ips-cambodia.com/listing-details/rental/102-villa-toul-kork",
        "https://ips-cambodia.com/listing-details/commercial/103-office-bkk2",
    ]
    assert [u.source_listing_id for u in urls] == ["101", "102", "103"]
    assert len({u.url for u in urls}) == len(urls)
    assert adapter.pages_visited == 3


def test_discover_stops_on_missing_page():
    adapter = ips_adapter({"https://ips-cambodia.com/rent/": IPS_PAGE_1})
    assert len(adapter.discover()) == 2
    assert adapter.pages_visited == 2


def test_crawl_respects_caps_and_reports_progress():
    channel = EventChannel()
    pages = {f"https://x.test/c?p={i}": f'<a href="/item/{i}a"></a><a href="/item/{i}b"></a>' for i in range(1, 6)}
    urls, visited = crawl_category_pages(
        pages.get,
        [("c", (f"https://x.test/c?p={i}" for i in range(1, 6)))],
        "https://x.test",
        lambda u: "/item/" in u,
        lambda u: None,
        JobReporter(channel),
        max_pages=2,
        max_urls=10,
    )
    assert visited == 2
    assert len(urls) == 4
    progress = [e for e in channel.drain() if isinstance(e, ProgressEvent)]
    assert progress[-1].percent == 100

    urls, _ = crawl_category_pages(
        pages.get, [("c", iter(pages))], "https://x.test",
        lambda u: "/item/" in u, lambda u: None, JobReporter(), max_pages=5, max_urls=3,
    )
    assert len(urls) == 3


def test_ips_scrape_listing():
    adapter = ips_adapter({IPS_URL: IPS_LISTING})
    item = adapter.scrape_listing(IPS_URL)
    assert item.title == "2 Bedroom Condo For Rent - BKK 1, Phnom Penh"
    assert item.source_listing_id == "101"
    assert item.property_type == PropertyType.CONDO
    assert item.price_monthly_usd == 1200
    assert item.currency == "USD"
    assert item.district == "BKK1"
    assert item.city == "Phnom Penh"
    assert (item.bedrooms, item.bathrooms, item.size_sqm) == (2, 2, 95)
    assert item.image_urls == [
        "https://ips-cambodia.com/wp-content/uploads/101-main.jpg",
        "https://ips-cambodia.com/wp-content/uploads/101-b.jpg",
    ]
    assert item.amenities == ["Fully Furnished", "Gym", "Swimming Pool"]
    assert item.posted_at.year == 2025 and item.posted_at.month == 2


def test_out_of_scope_pages_return_none():
    adapter = ips_adapter({
        "https://ips-cambodia.com/listing-details/rental/1-w": "<h1>Warehouse for rent 800sqm - Por Sen Chey</h1>",
        "https://ips-cambodia.com/listing-details/rental/2-x": "<html><body><p>Not found</p></body></html>",
    })
    assert adapter.scrape_listing("https://ips-cambodia.com/listing-details/rental/1-w") is None
    assert adapter.scrape_listing("https://ips-cambodia.com/listing-details/rental/2-x") is None
    # fetch failure
    assert adapter.scrape_listing("https://ips-cambodia.com/listing-details/rental/3-y") is None


KHMER24_CATEGORY = """
<a href="/en/2-bedroom-condo-for-rent-in-bkk1-12345678.html">Condo</a>
<a href="/en/studio-near-russian-market-12345679.html">Studio</a>
<a href="/en/condo-for-rent.html">Condos</a>
<a href="/en/search?q=condo">Search</a>
"""

KHMER24_LISTING = """
<html><body>
  <h1 class="item-title">Studio for rent near Russian Market</h1>
  <div class="item-price">$350</div>
  <div class="item-location">Toul Tom Poung 1, Chamkarmon, Phnom Penh</div>
  <div class="item-description">Studio apartment 35 sqm, 1 bathroom, wifi included.</div>
  <span class="item-date">3d ago</span>
</body></html>
"""


def test_khmer24_listing_urls():
    assert khmer24.is_listing_url("https://www.khmer24.com/en/studio-near-russian-market-12345679.html")
    assert not khmer24.is_listing_url("https://www.khmer24.com/en/condo-for-rent.html")
    assert not khmer24.is_listing_url("https://example.com/en/x-12345679.html")
    assert khmer24.extract_listing_id("https://www.khmer24.com/en/x-12345679.html") == "12345679"


def test_khmer24_discover_and_scrape():
    url = "https://khmer24.com/en/studio-near-russian-market-12345679.html"
    fetcher = FakeFetcher({khmer24.CATEGORY_URLS[0]: KHMER24_CATEGORY, url: KHMER24_LISTING})
    adapter = khmer24.Khmer24Adapter(reporter=JobReporter(), fetcher=fetcher)
    found = adapter.discover()
    assert [u.source_listing_id for u in found] == ["12345678", "12345679"]

    item = adapter.scrape_listing(url)
    assert item.property_type == PropertyType.APARTMENT
    assert item.price_monthly_usd == 350
    assert item.district == "Toul Tom Poung"
    assert (item.bedrooms, item.bathrooms, item.size_sqm) == (0, 1, 35)
    assert item.posted_at is not None
    assert "WiFi/Internet" in item.amenities
    adapter.close()
    assert fetcher.closed


REALESTATE_JSON = {
    ("/rent/apartment/", 1): {
        "results": [
            {"id": 259490, "url": "/rent/bkk-1/2-bed-condo-259490/"},
            {"id": 300001, "url": "/rent/tonle-bassac/project-x-300001/",
             "nested": [{"id": 300002, "url": "/rent/tonle-bassac/unit-a-300002/"}]},
        ],
        "last_page": 1,
    },
    ("/rent/villa/", 1): {
        "results": [
            {"id": 259490, "url": "/rent/bkk-1/2-bed-condo-259490/"},
            {"id": 400001, "url": "/rent/sen-sok/villa-400001/"},
        ],
    },
}

REALESTATE_LISTING = """
<html><body>
  <h1>3 Bed Villa in Toul Kork</h1>
  <div class="prices">
    <div class="price"><span class="prefix">Sale</span> $450,000</div>
    <div class="price"><span class="prefix">Rent</span> $2,500 /month</div>
  </div>
  <div class="listing-location">Toul Kork, Phnom Penh</div>
  <div class="description">Spacious villa with garden and parking.</div>
  <dl><dt>Bedrooms</dt><dd>3</dd><dt>Bathrooms</dt><dd>4</dd><dt>Floor area</dt><dd>320 m²</dd></dl>
</body></html>
"""


def test_realestate_discover_uses_api_and_nested_results():
    fetcher = FakeFetcher(json_pages=REALESTATE_JSON)
    adapter = realestate_kh.RealestateKhAdapter(reporter=JobReporter(), fetcher=fetcher)
    found = adapter.discover()
    assert [u.source_listing_id for u in found] == ["259490", "300001", "300002", "400001"]
    assert found[0].url == "https://realestate.com.kh/rent/bkk-1/2-bed-condo-259490"
    assert adapter.pages_visited == 6


def test_realestate_discover_skips_malformed_api_pages():
    fetcher = FakeFetcher(json_pages={
        ("/rent/apartment/", 1): ["not", "an", "object"],
        ("/rent/serviced-apartment/", 1): "maintenance",
        ("/rent/penthouse/", 1): {"results": "oops"},
        ("/rent/villa/", 1): {"results": [42, {"id": 400001, "url": "/rent/sen-sok/villa-400001/"}]},
    })
    adapter = realestate_kh.RealestateKhAdapter(reporter=JobReporter(), fetcher=fetcher)
    found = adapter.discover()
    assert [u.source_listing_id for u in found] == ["400001"]


def test_realestate_prefers_rent_price():
    url = "https://realestate.com.kh/rent/toul-kork/3-bed-villa-259491"
    adapter = realestate_kh.RealestateKhAdapter(reporter=JobReporter(), fetcher=FakeFetcher({url: REALESTATE_LISTING}))
    item = adapter.scrape_listing(url)
    assert item.property_type == PropertyType.VILLA
    assert item.price_monthly_usd == 2500
    assert item.price_original == "$2,500"
    assert item.district == "Toul Kork"
    assert (item.bedrooms, item.bathrooms, item.size_sqm) == (3, 4, 320)
    assert item.source_listing_id == "259491"
    assert item.amenities == ["Garden", "Parking"]


def test_realestate_district_from_url():
    assert realestate_kh.district_from_url("https://realestate.com.kh/rent/bkk-1/x-123456/") == "BKK 1"
    assert realestate_kh.district_from_url("https://realestate.com.kh/rent/tonle-bassac/x/") == "Tonle Bassac"
    assert realestate_kh.district_from_url("https://realestate.com.kh/buy/bkk-1/x/") is None


def test_title_location_and_spec_fields():
    assert location_from_title("2 Bed Condo for Rent in BKK 1") == "BKK 1"
    assert location_from_title("Villa For Rent - Toul Kork, Phnom Penh") == "Toul Kork, Phnom Penh"
    assert location_from_title("Nice condo") is None
    soup = make_soup("<table><tr><th>Bedrooms</th><td>2</td></tr></table><ul><li>Size: 80 sqm</li></ul>")
    assert spec_fields(soup) == {"Bedrooms": "2", "Size": "80 sqm"}


def test_registry(monkeypatch):
    assert parse_source("ips_cambodia") is Source.IPS_CAMBODIA
    with pytest.raises(UnknownSourceError):
        parse_source("craigslist")
    adapter = get_adapter("IPS_CAMBODIA", JobReporter(), fetcher=FakeFetcher())
    assert adapter.source is Source.IPS_CAMBODIA

    monkeypatch.setattr("rentalindex.config.ENABLED_SOURCES", ["IPS_CAMBODIA"])
    with pytest.raises(SourceDisabledError):
        get_adapter(Source.KHMER24, fetcher=FakeFetcher())
