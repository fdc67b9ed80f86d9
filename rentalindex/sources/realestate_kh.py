# rentalindex/sources/realestate_kh.py
"""realestate.com.kh portal.

The site is a single-page app whose HTML category pages do not paginate,
so discovery goes through the portal's JSON results API. Listing pages
are server rendered and fetched over plain HTTP.
"""
import re
from typing import List, Optional
from urllib.parse import urlsplit

from .. import config
from ..classify import classify_property_type
from ..events import JobReporter
from ..fetch import HttpFetcher
from ..models import Source
from ..parse import (
    clean_image_urls, detect_currency, parse_amenities, parse_city,
    parse_posted_date, parse_price_monthly_usd, resolve_district,
)
from ..schemas import DiscoveredUrl, ScrapedListing
from ..urls import absolute_url, canonicalize_url
from .base import (
    all_text, first_text, image_sources, json_ld, location_from_title,
    make_soup, meta_content, spec_fields, specs_from_fields,
)

ORIGIN = "https://www.realestate.com.kh"
API_BASE = "https://www.realestate.com.kh/api/portal/pages/results/"
API_PAGE_SIZE = 50

# /rent/condo/ duplicates /rent/apartment/ on the API
CATEGORY_PATHNAMES = [
    ("/rent/apartment/", "apartment"),
    ("/rent/serviced-apartment/", "serviced-apartment"),
    ("/rent/penthouse/", "penthouse"),
    ("/rent/house/", "house"),
    ("/rent/villa/", "villa"),
]

LISTING_ID_RE = re.compile(r"-(\d{5,})/?(?:[?#]|$)")
PRICE_AMOUNT_RE = re.compile(r"\$\s*([\d,]+)")
DESC_MONTHLY_RE = re.compile(r"\$([\d,]+)\s*/?\s*(?:month|mo)\b", re.I)
HTML_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*m²", re.I)


def extract_listing_id(url: str) -> Optional[str]:
    m = LISTING_ID_RE.search(url)
    return m.group(1) if m else None


def district_from_url(url: str) -> Optional[str]:
    """``/rent/bkk-1/<slug>/`` -> "BKK 1", ``/rent/tonle-bassac/...`` -> "Tonle Bassac"."""
    segments = [s for s in urlsplit(url).path.split("/") if s]
    if len(segments) < 3 or segments[0] != "rent":
        return None
    slug = segments[1]
    if slug.startswith("bkk"):
        return slug.replace("-", " ").upper()
    return " ".join(w.capitalize() for w in slug.split("-"))


def rental_price_text(soup, description: Optional[str], url: str) -> Optional[str]:
    """Prefer the block labelled as rent; dual-listed pages also show a sale price."""
    for block in soup.select(".prices .price, .price-section .price-row"):
        label = " ".join(el.get_text(" ", strip=True) for el in block.select(".prefix, .price-title")).lower()
        if "rent" in label or "per month" in label:
            m = PRICE_AMOUNT_RE.search(block.get_text(" ", strip=True))
            if m:
                return "$" + m.group(1)
    if description:
        m = DESC_MONTHLY_RE.search(description)
        if m:
            return "$" + m.group(1)
    if "/rent/" in url:
        return first_text(soup, "[class*='price']", ".listing-price")
    return None


class RealestateKhAdapter:
    source = Source.REALESTATE_KH

    def __init__(self, reporter: Optional[JobReporter] = None, fetcher=None):
        self.reporter = reporter or JobReporter(stage="discover")
        self.fetcher = fetcher or HttpFetcher(cancel=self.reporter.cancel, site=self.source.value)
        self.pages_visited = 0

    def _api_page(self, pathname: str, page: int) -> Optional[dict]:
        data = self.fetcher.fetch_json(API_BASE, params={
            "pathname": pathname,
            "page_size": API_PAGE_SIZE,
            "page": page,
            "search_languages": "en",
            "order_by": "date-desc",
        })
        if data is not None and not isinstance(data, dict):
            self.reporter.warn(f"Unexpected API payload for {pathname} page {page}: {type(data).__name__}")
            return None
        return data

    def _add_result(self, result: dict, seen: set, out: List[DiscoveredUrl], max_urls: int) -> int:
        added = 0
        if not isinstance(result, dict):
            return 0
        href = result.get("url")
        if href and len(out) < max_urls:
            full = absolute_url(href, ORIGIN)
            canonical = canonicalize_url(full)
            if canonical not in seen:
                seen.add(canonical)
                listing_id = extract_listing_id(full) or (str(result["id"]) if result.get("id") is not None else None)
                out.append(DiscoveredUrl(url=canonical, source_listing_id=listing_id))
                added += 1
        # project listings carry their units as nested results
        for nested in result.get("nested") or []:
            added += self._add_result(nested, seen, out, max_urls)
        return added

    def discover(self) -> List[DiscoveredUrl]:
        max_pages = config.DISCOVER_MAX_PAGES
        max_urls = config.DISCOVER_MAX_URLS
        seen = set()
        urls: List[DiscoveredUrl] = []
        self.pages_visited = 0

        for ci, (pathname, label) in enumerate(CATEGORY_PATHNAMES):
            if len(urls) >= max_urls:
                break
            self.reporter.info(f"Scanning category: {label}")
            last_page = max_pages
            page = 1
            while page <= min(max_pages, last_page) and len(urls) < max_urls:
                self.pages_visited += 1
                data = self._api_page(pathname, page)
                done = (ci * max_pages + page) * 100.0 / (len(CATEGORY_PATHNAMES) * max_pages)
                self.reporter.progress("discover", done, f"{label} page {page}")
                results = (data or {}).get("results") or []
                if not isinstance(results, list):
                    results = []
                if not results:
                    if page == 1:
                        self.reporter.warn(f"No results for {label}")
                    break
                if data.get("last_page"):
                    last_page = int(data["last_page"])
                found = sum(self._add_result(r, seen, urls, max_urls) for r in results)
                self.reporter.info(f"[{label}] page {page}: {found} new URLs (total {len(urls)})")
                if found == 0:
                    break
                page += 1

        self.reporter.info(f"Discovery complete: {len(urls)} unique URLs from {self.pages_visited} API calls")
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
        description = first_text(soup, "[class*='description']", ".listing-description", ".property-description")

        # the URL slug often names the type: /rent/bkk-1/3-bed-4-bath-villa-259490/
        property_type = classify_property_type(f"{title} {urlsplit(url).path.replace('-', ' ')}", description)
        if property_type is None:
            self.reporter.debug(f"Skipped non-residential listing: {title[:80]}")
            return None

        price_text = rental_price_text(soup, description, url)
        price = parse_price_monthly_usd(price_text)
        self.reporter.debug(f"Price: {price_text or 'not found'} -> {price if price is not None else 'N/A'}")

        location_text = first_text(soup, "[class*='location']", ".listing-location", ".address")
        breadcrumb = first_text(soup, "[class*='breadcrumb']")
        district = resolve_district(location_text, location_from_title(title), breadcrumb, district_from_url(url))
        city = parse_city(location_text or breadcrumb or title, district)

        detail_text = all_text(soup, "[class*='detail'], [class*='feature'], .amenities, .listing-info")
        specs = specs_from_fields(spec_fields(soup), f"{title} {detail_text} {description or ''}")
        if specs["size_sqm"] is None:
            m = HTML_SIZE_RE.search(html)
            if m:
                specs["size_sqm"] = float(m.group(1))

        images = clean_image_urls(
            [meta_content(soup, "og:image")]
            + image_sources(soup, "img[src*='realestate'], img[src*='cloudfront'], img[src*='cdn'], img[data-src]")
            + image_sources(soup, "[class*='gallery'] img, [class*='slider'] img, [class*='carousel'] img, [class*='photo'] img")
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
            currency=detect_currency(price_text) or ("USD" if price_text else None),
            image_urls=images,
            amenities=parse_amenities(f"{title} {detail_text} {description or ''}"),
            posted_at=parse_posted_date(json_ld(soup).get("datePosted")),
        )

    def close(self):
        self.fetcher.close()
