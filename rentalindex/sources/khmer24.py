# rentalindex/sources/khmer24.py
"""Khmer24 classifieds.

The site sits behind a bot-mitigation layer, so every page goes through
the headless browser fetcher.
"""
import re
from typing import List, Optional
from urllib.parse import urlsplit

from ..classify import classify_property_type, should_ingest
from ..events import JobReporter
from ..fetch import BrowserFetcher
from ..models import Source
from ..parse import (
    clean_image_urls, detect_currency, parse_amenities, parse_city,
    parse_posted_date, parse_price_monthly_usd, resolve_district,
)
from ..schemas import DiscoveredUrl, ScrapedListing
from .base import (
    all_text, crawl_category_pages, first_text, image_sources, json_ld,
    location_from_title, make_soup, meta_content, spec_fields, specs_from_fields,
)

ORIGIN = "https://www.khmer24.com"
CATEGORY_URLS = [
    "https://www.khmer24.com/en/apartment-for-rent.html",
    "https://www.khmer24.com/en/condo-for-rent.html",
]
LISTING_PATH_RE = re.compile(r"^/en/.+-\d+\.html$")
LISTING_ID_RE = re.compile(r"-(\d{4,})\.html")


def is_listing_url(url: str) -> bool:
    parts = urlsplit(url)
    path = parts.path
    return (
        "khmer24.com" in (parts.hostname or "")
        and bool(LISTING_PATH_RE.match(path))
        and "/search" not in path
        and "/category" not in path
        and "/page/" not in path
        and not path.endswith("-for-rent.html")
    )


def extract_listing_id(url: str) -> Optional[str]:
    m = LISTING_ID_RE.search(url)
    return m.group(1) if m else None


def category_pages(base: str):
    yield base
    page = 2
    while True:
        yield f"{base}?page={page}"
        page += 1


class Khmer24Adapter:
    source = Source.KHMER24

    def __init__(self, reporter: Optional[JobReporter] = None, fetcher=None):
        self.reporter = reporter or JobReporter(stage="discover")
        self.fetcher = fetcher or BrowserFetcher(cancel=self.reporter.cancel, site=self.source.value)
        self.pages_visited = 0

    def discover(self) -> List[DiscoveredUrl]:
        urls, self.pages_visited = crawl_category_pages(
            self.fetcher.fetch,
            [(base, category_pages(base)) for base in CATEGORY_URLS],
            ORIGIN,
            is_listing_url,
            extract_listing_id,
            self.reporter,
        )
        self.reporter.info(f"Discovery complete: {len(urls)} unique URLs from {self.pages_visited} pages")
        return urls

    def scrape_listing(self, url: str) -> Optional[ScrapedListing]:
        html = self.fetcher.fetch(url)
        if html is None:
            self.reporter.warn(f"No HTML returned for listing: {url}")
            return None
        soup = make_soup(html)

        title = first_text(soup, "h1", ".item-title") or meta_content(soup, "og:title")
        if not title:
            self.reporter.debug(f"No title found on page: {url}")
            return None
        description = first_text(soup, ".item-description", ".description", "[class*='description']")

        property_type = classify_property_type(title, description)
        if not should_ingest(property_type):
            self.reporter.debug(f"Skipped non-residential listing: {title[:80]}")
            return None

        price_text = first_text(soup, ".item-price", ".price", "[class*='price']")
        price = parse_price_monthly_usd(price_text)

        location_text = first_text(soup, ".item-location", ".location", "[class*='location']")
        district = resolve_district(
            location_text,
            location_from_title(title),
            first_text(soup, "[class*='breadcrumb']"),
        )
        city = parse_city(location_text or title, district)

        detail_text = all_text(soup, ".item-detail, .detail-info, [class*='detail']")
        specs = specs_from_fields(spec_fields(soup), f"{title} {detail_text} {description or ''}")

        images = clean_image_urls(
            [meta_content(soup, "og:image")]
            + image_sources(soup, ".item-gallery img, .gallery img, [class*='gallery'] img, .item-image img")
        )
        posted_raw = json_ld(soup).get("datePosted") or first_text(soup, ".item-date", ".posted-date", "time")

        return ScrapedListing(
            source_listing_id=extract_listing_id(url),
            title=title,
            description=description,
            city=city,
            district=district,
            property_type=property_type,
            bedrooms=specs["bedrooms"],
            bathrooms=specs["bathrooms"],
            size_sqm=specs["size_sqm"],
            price_original=price_text,
            price_monthly_usd=price,
            currency=detect_currency(price_text) or ("USD" if price is not None else None),
            image_urls=images,
            amenities=parse_amenities(f"{title} {detail_text} {description or ''}"),
            posted_at=parse_posted_date(posted_raw),
        )

    def close(self):
        self.fetcher.close()
