# rentalindex/sources/ips_cambodia.py
"""IPS Cambodia agency listings, plain HTTP.

Category pages paginate as ``/rent/?paging=N``; listing pages look like
``/listing-details/rental/<id>-<slug>/``.
"""
import re
from typing import List, Optional
from urllib.parse import urlsplit

from ..classify import classify_property_type, should_ingest
from ..events import JobReporter
from ..fetch import HttpFetcher
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

ORIGIN = "https://ips-cambodia.com"
CATEGORY_URLS = ["https://ips-cambodia.com/rent/"]
LISTING_PATH_RE = re.compile(r"^/listing-details/(?:rental|commercial)/\d+-[^/]+/?$")
LISTING_ID_RE = re.compile(r"listing-details/(?:rental|commercial)/(\d+)-")
MONTHLY_PRICE_RE = re.compile(r"\$\s*([\d,]+)\s*/?\s*month", re.I)


def is_listing_url(url: str) -> bool:
    parts = urlsplit(url)
    return "ips-cambodia.com" in (parts.hostname or "") and bool(LISTING_PATH_RE.match(parts.path))


def extract_listing_id(url: str) -> Optional[str]:
    m = LISTING_ID_RE.search(url)
    return m.group(1) if m else None


def category_pages(base: str):
    yield base
    page = 2
    while True:
        yield f"{base}?paging={page}"
        page += 1


class IpsCambodiaAdapter:
    source = Source.IPS_CAMBODIA

    def __init__(self, reporter: Optional[JobReporter] = None, fetcher=None):
        self.reporter = reporter or JobReporter(stage="discover")
        self.fetcher = fetcher or HttpFetcher(cancel=self.reporter.cancel, site=self.source.value)
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
        self.reporter.debug(f"Fetching listing page: {url}")
        html = self.fetcher.fetch(url)
        if html is None:
            self.reporter.warn(f"No HTML returned for listing: {url}")
            return None
        soup = make_soup(html)

        title = first_text(soup, "h1", "[class*='title']")
        if not title:
            self.reporter.debug(f"No title found on page: {url}")
            return None
        description = first_text(
            soup, "[class*='description']", ".listing-description", ".property-description", ".detail-content"
        )
        property_type = classify_property_type(title, description)
        if not should_ingest(property_type):
            self.reporter.debug(f"Skipped non-residential listing: {title[:80]}")
            return None

        price_text = first_text(soup, "[class*='price']", ".listing-price", ".detail-price")
        if not price_text:
            m = MONTHLY_PRICE_RE.search(soup.get_text(" ", strip=True))
            if m:
                price_text = "$" + m.group(1)
        price = parse_price_monthly_usd(price_text)
        self.reporter.debug(f"Price: {price_text or 'not found'} -> {price if price is not None else 'N/A'}")

        # titles read "2 Bedroom Condo For Rent - Toul Kork, Phnom Penh"
        title_location = location_from_title(title)
        location_text = first_text(soup, "[class*='location']", ".address")
        breadcrumb = first_text(soup, "[class*='breadcrumb']")
        district = resolve_district(location_text, title_location, breadcrumb)
        city = parse_city(title_location or location_text or breadcrumb or title, district)

        detail_text = all_text(soup, "[class*='detail'], [class*='feature'], [class*='amenity'], [class*='info']")
        specs = specs_from_fields(spec_fields(soup), f"{title} {detail_text} {description or ''}")

        images = clean_image_urls(
            image_sources(soup, "img[src*='ips-cambodia'], img[src*='cloudfront'], img[data-src]")
            + image_sources(soup, "[class*='gallery'] img, [class*='slider'] img, [class*='carousel'] img")
            + [meta_content(soup, "og:image")]
        )

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
            currency=detect_currency(price_text) or "USD",
            image_urls=images,
            amenities=parse_amenities(f"{title} {description or ''}"),
            posted_at=parse_posted_date(json_ld(soup).get("datePosted")),
        )

    def close(self):
        self.fetcher.close()
