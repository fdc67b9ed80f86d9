# rentalindex/sources/base.py
"""Shared pieces for per-site source adapters.

An adapter is any object with ``discover()``, ``scrape_listing(url)`` and
``close()``; ``registry.ADAPTERS`` maps each ``Source`` to its implementation.
"""
import json
import re
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from bs4 import BeautifulSoup

from .. import config
from ..events import JobReporter
from ..models import Source
from ..parse import parse_beds_baths_size
from ..schemas import DiscoveredUrl, ScrapedListing
from ..urls import absolute_url, canonicalize_url

# try to detect available parser; prefer lxml if installed
try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except ImportError:
    _bs_parser = "html.parser"


class SourceAdapter(Protocol):
    source: Source
    pages_visited: int

    def discover(self) -> List[DiscoveredUrl]:
        ...

    def scrape_listing(self, url: str) -> Optional[ScrapedListing]:
        ...

    def close(self) -> None:
        ...


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, _bs_parser)


def first_text(soup, *selectors: str) -> Optional[str]:
    """Text of the first non-empty element matching any selector, in order."""
    for selector in selectors:
        for el in soup.select(selector):
            text = el.get_text(" ", strip=True)
            if text:
                return text
    return None


def all_text(soup, selector: str) -> str:
    return " ".join(el.get_text(" ", strip=True) for el in soup.select(selector))


def meta_content(soup, prop: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"property": prop}) or soup.find("meta", attrs={"name": prop})
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None


def json_ld(soup) -> Dict:
    """First JSON-LD object on the page, or an empty dict."""
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        if isinstance(data, list):
            data = next((d for d in data if isinstance(d, dict)), None)
        if isinstance(data, dict):
            return data
    return {}


def image_sources(soup, selector: str) -> List[str]:
    out = []
    for img in soup.select(selector):
        src = img.get("data-src") or img.get("src") or img.get("data-lazy")
        if src:
            out.append(src)
    return out


# ---------- structured spec fields ----------

# field label pattern, and how to phrase the value for parse_beds_baths_size
SPEC_KEYS = {
    "bedrooms": (re.compile(r"bed", re.I), "{} bedrooms"),
    "bathrooms": (re.compile(r"bath", re.I), "{} bathrooms"),
    "size_sqm": (re.compile(r"size|area|sqm|m²", re.I), "size {}"),
}


def spec_fields(soup, container: str = "") -> Dict[str, str]:
    """Label/value pairs from definition lists, tables and "Label: value" items."""
    scope = f"{container} " if container else ""
    fields: Dict[str, str] = {}
    for dt in soup.select(f"{scope}dt"):
        dd = dt.find_next_sibling("dd")
        if dd:
            fields[dt.get_text(" ", strip=True)] = dd.get_text(" ", strip=True)
    for tr in soup.select(f"{scope}tr"):
        cells = tr.find_all(["th", "td"])
        if len(cells) >= 2:
            fields[cells[0].get_text(" ", strip=True)] = cells[1].get_text(" ", strip=True)
    for li in soup.select(f"{scope}li"):
        text = li.get_text(" ", strip=True)
        if ":" in text and len(text) < 80:
            label, value = text.split(":", 1)
            fields.setdefault(label.strip(), value.strip())
    return fields


def specs_from_fields(fields: Dict[str, str], fallback_text: str) -> Dict[str, Optional[float]]:
    """Structured spec fields first, free-text regex second."""
    result = {"bedrooms": None, "bathrooms": None, "size_sqm": None}
    for label, value in fields.items():
        for key, (rx, phrase) in SPEC_KEYS.items():
            if result[key] is None and rx.search(label):
                parsed = parse_beds_baths_size(phrase.format(value))
                result[key] = parsed[key]
    fallback = parse_beds_baths_size(fallback_text)
    for key in result:
        if result[key] is None:
            result[key] = fallback[key]
    return result


TITLE_IN_RE = re.compile(r"\b(?:in|at)\s+([^|]+?)\s*$", re.I)
TITLE_DASH_RE = re.compile(r"\s[-–]\s*([^-–]+)$")


def location_from_title(title: str) -> Optional[str]:
    """ "2 Bed Condo for Rent in BKK 1" or "... For Rent - Toul Kork, Phnom Penh"."""
    if not title:
        return None
    m = TITLE_DASH_RE.search(title) or TITLE_IN_RE.search(title)
    return m.group(1).strip() if m else None


# ---------- category pagination ----------

def crawl_category_pages(
    fetch_page: Callable[[str], Optional[str]],
    page_urls: Iterable[Tuple[str, Iterable[str]]],
    origin: str,
    is_listing_url: Callable[[str], bool],
    listing_id: Callable[[str], Optional[str]],
    reporter: JobReporter,
    max_pages: int = None,
    max_urls: int = None,
) -> Tuple[List[DiscoveredUrl], int]:
    """Walk paginated category pages collecting listing links.

    ``page_urls`` yields ``(category, pages)`` where ``pages`` produces that
    category's page URLs in order. A category stops at ``max_pages``, at the
    first page that fails to load, or at the first page with no new links.
    Returns the de-duplicated URLs and the number of pages visited.
    """
    max_pages = config.DISCOVER_MAX_PAGES if max_pages is None else max_pages
    max_urls = config.DISCOVER_MAX_URLS if max_urls is None else max_urls
    categories = list(page_urls)
    seen = set()
    urls: List[DiscoveredUrl] = []
    visited = 0

    for ci, (category, pages) in enumerate(categories):
        if len(urls) >= max_urls:
            break
        reporter.info(f"Scanning category: {category}")
        for pi, page_url in enumerate(pages, start=1):
            if pi > max_pages or len(urls) >= max_urls:
                break
            visited += 1
            html = fetch_page(page_url)
            done = (ci * max_pages + pi) * 100.0 / (len(categories) * max_pages)
            reporter.progress("discover", done, f"{category} page {pi}")
            if html is None:
                reporter.warn(f"No HTML returned for {page_url}")
                break
            soup = make_soup(html)
            found = 0
            for a in soup.find_all("a", href=True):
                if len(urls) >= max_urls:
                    break
                full = absolute_url(a["href"], origin)
                if not is_listing_url(full):
                    continue
                canonical = canonicalize_url(full)
                if canonical in seen:
                    continue
                seen.add(canonical)
                urls.append(DiscoveredUrl(url=canonical, source_listing_id=listing_id(full)))
                found += 1
            reporter.info(f"Page {pi}: {found} new listing links (total {len(urls)})", {"url": page_url})
            if found == 0:
                # pagination exhausted
                break
    return urls, visited
