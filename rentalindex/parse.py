# rentalindex/parse.py
"""Parsing helpers for rental listing extraction.

Deterministic, side-effect free parsers shared by every source adapter:
price, beds/baths/size, district and city normalisation, amenities,
posted dates, and image URL cleanup.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from . import config
from .utils import as_utc, safe_int, safe_number

# ---------- price ----------

NIGHTLY_RE = re.compile(r"(per\s*night|/\s*night|nightly)")
WEEKLY_RE = re.compile(r"(per\s*week|/\s*week|weekly)")
SALE_RE = re.compile(r"\b(for\s*sale|sale\s*price)\b")
RENT_RE = re.compile(r"(for\s*rent|per\s*month|/\s*month|/\s*mo\b)")
USD_RE = re.compile(r"(?:us\$|\$|usd)\s*(\d+(?:\.\d+)?)(k?)|(\d+(?:\.\d+)?)(k?)\s*(?:\$|usd)")
KHR_RE = re.compile(r"(?:khr|៛)\s*(\d+(?:\.\d+)?)|(\d+(?:\.\d+)?)\s*(?:khr|riels?|៛)")
MONTH_HINT_RE = re.compile(r"\b(month|mo|monthly)\b")
BARE_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")


def _plausible(amount: Optional[float]) -> Optional[float]:
    if amount is None:
        return None
    if amount < config.MIN_MONTHLY_USD or amount > config.MAX_MONTHLY_USD:
        return None
    return round(amount, 2)


def detect_currency(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    t = text.lower()
    if "៛" in t or "khr" in t or "riel" in t:
        return "KHR"
    if "$" in t or "usd" in t:
        return "USD"
    return None


def parse_price_monthly_usd(raw: Optional[str]) -> Optional[float]:
    """Parse a price string into a monthly USD amount.

    Handles "$800", "$800/month", "USD 1,200 per month", "800$/mo", "1.2k USD"
    and riel amounts (converted at ``KHR_PER_USD``). Nightly and weekly
    prices, sale-only prices, and amounts outside $50..$15,000 are rejected.
    """
    if not raw:
        return None
    text = raw.lower().strip()

    if NIGHTLY_RE.search(text) or WEEKLY_RE.search(text):
        return None
    if SALE_RE.search(text) and not RENT_RE.search(text):
        return None

    cleaned = text.replace(",", "")

    m = USD_RE.search(cleaned)
    if m:
        number = m.group(1) or m.group(3)
        kilo = m.group(2) or m.group(4)
        amount = safe_number(number)
        if amount is not None and kilo:
            amount *= 1000
        return _plausible(amount)

    m = KHR_RE.search(cleaned)
    if m:
        riel = safe_number(m.group(1) or m.group(2))
        if riel is None:
            return None
        return _plausible(riel / config.KHR_PER_USD)

    if MONTH_HINT_RE.search(text):
        bare = BARE_NUMBER_RE.search(cleaned)
        if bare:
            return _plausible(safe_number(bare.group(1)))
    return None


# ---------- beds / baths / size ----------

BED_RES = [
    re.compile(r"(\d+)\s*(?:bed(?:room)?s?|br)\b"),
    re.compile(r"\b(?:bed(?:room)?s?|br)\s*[:=]?\s*(\d+)"),
]
BATH_RES = [
    re.compile(r"(\d+)\s*(?:bath(?:room)?s?|ba)\b"),
    re.compile(r"\b(?:bath(?:room)?s?|ba)\s*[:=]?\s*(\d+)"),
]
SIZE_UNIT = r"(?:sq\.?\s*m(?:eters?|etres?)?|sqm|m²|m2|square\s*met(?:er|re)s?)(?![a-z0-9])"
SIZE_RES = [
    re.compile(r"(\d+(?:[.,]\d+)?)\s*" + SIZE_UNIT),
    re.compile(r"\b(?:size|area|floor\s*area|living\s*area)\s*[:=]?\s*(\d+(?:[.,]\d+)?)\s*(?:" + SIZE_UNIT + r")?"),
]
STUDIO_RE = re.compile(r"\bstudio\b")


def _first_int(patterns, text: str) -> Optional[int]:
    for rx in patterns:
        m = rx.search(text)
        if m:
            return safe_int(m.group(1))
    return None


def _size_number(token: str) -> Optional[float]:
    # "1,200" is a thousands separator, "75,5" a decimal comma
    if re.fullmatch(r"\d{1,3},\d{3}", token):
        token = token.replace(",", "")
    return safe_number(token.replace(",", "."))


def parse_beds_baths_size(text: Optional[str]) -> Dict[str, Optional[float]]:
    result = {"bedrooms": None, "bathrooms": None, "size_sqm": None}
    if not text:
        return result
    t = text.lower()

    result["bedrooms"] = _first_int(BED_RES, t)
    if result["bedrooms"] is None and STUDIO_RE.search(t):
        result["bedrooms"] = 0
    result["bathrooms"] = _first_int(BATH_RES, t)

    for rx in SIZE_RES:
        m = rx.search(t)
        if m:
            size = _size_number(m.group(1))
            if size is not None and 0 < size < 10_000:
                result["size_sqm"] = size
                break
    return result


# ---------- district / city ----------

DISTRICT_ALIASES = {
    # BKK / Chamkarmon
    "bkk1": "BKK1", "bkk 1": "BKK1", "bkk-1": "BKK1",
    "boeung keng kang 1": "BKK1", "boeung keng kang i": "BKK1",
    "boeng keng kang 1": "BKK1", "boeng keng kang muoy": "BKK1",
    "bkk2": "BKK2", "bkk 2": "BKK2", "bkk-2": "BKK2",
    "boeung keng kang 2": "BKK2", "boeung keng kang ii": "BKK2",
    "bkk3": "BKK3", "bkk 3": "BKK3", "bkk-3": "BKK3",
    "boeung keng kang 3": "BKK3", "boeung keng kang iii": "BKK3",
    "tonle bassac": "Tonle Bassac", "tonle basac": "Tonle Bassac", "tonle basak": "Tonle Bassac",
    "chamkarmon": "Chamkarmon", "chamkar mon": "Chamkarmon", "chamkarmorn": "Chamkarmon",
    "toul tom poung": "Toul Tom Poung", "toul tum poung": "Toul Tom Poung",
    "tuol tom pong": "Toul Tom Poung", "tuol tompong": "Toul Tom Poung",
    "toul tompong": "Toul Tom Poung", "russian market": "Toul Tom Poung", "ttp": "Toul Tom Poung",
    "boeung trabek": "Boeung Trabek", "boeng trabek": "Boeung Trabek",
    "tuol svay prey": "Tuol Svay Prey", "toul svay prey": "Tuol Svay Prey",
    "koh pich": "Koh Pich", "diamond island": "Koh Pich",
    # Daun Penh
    "daun penh": "Daun Penh", "doun penh": "Daun Penh", "don penh": "Daun Penh",
    "wat phnom": "Daun Penh", "phsar kandal": "Daun Penh", "srah chak": "Daun Penh",
    "chey chumneah": "Daun Penh", "phsar thmey": "Daun Penh",
    # 7 Makara
    "7 makara": "7 Makara", "prampi makara": "7 Makara", "prampir makara": "7 Makara",
    "boeung prolit": "7 Makara", "veal vong": "7 Makara", "olympic": "7 Makara",
    # Toul Kork
    "toul kork": "Toul Kork", "tuol kork": "Toul Kork", "tuol kouk": "Toul Kork",
    "toul kok": "Toul Kork", "boeung kak": "Toul Kork", "teuk laak": "Toul Kork",
    # outer khans
    "sen sok": "Sen Sok", "sensok": "Sen Sok", "saensokh": "Sen Sok", "phnom penh thmey": "Sen Sok",
    "russey keo": "Russey Keo", "russei keo": "Russey Keo", "rusey keo": "Russey Keo",
    "chroy changvar": "Chroy Changvar", "chrouy changvar": "Chroy Changvar",
    "chroy changva": "Chroy Changvar",
    "meanchey": "Meanchey", "mean chey": "Meanchey", "boeung tumpun": "Meanchey",
    "chbar ampov": "Chbar Ampov", "chbar ampeou": "Chbar Ampov", "nirouth": "Chbar Ampov",
    "por sen chey": "Por Sen Chey", "pur senchey": "Por Sen Chey", "posenchey": "Por Sen Chey",
    "stung meanchey": "Stung Meanchey", "stueng meanchey": "Stung Meanchey",
    "steung meanchey": "Stung Meanchey",
    "dangkao": "Dangkao", "prek pnov": "Prek Pnov", "kamboul": "Kamboul", "kambol": "Kamboul",
    # Siem Reap
    "sala kamreuk": "Sala Kamreuk", "sala kamraeuk": "Sala Kamreuk",
    "svay dankum": "Svay Dankum", "sla kram": "Sla Kram",
    "kok chak": "Kok Chak", "kouk chak": "Kok Chak", "chreav": "Chreav",
    "nokor thum": "Nokor Thum", "krabei riel": "Krabei Riel",
    # other cities
    "sihanoukville": "Sihanoukville", "krong preah sihanouk": "Sihanoukville",
    "kampot": "Kampot", "kep": "Kep", "krong kaeb": "Kep",
}

CITY_ALIASES = {
    "phnom penh": "Phnom Penh",
    "siem reap": "Siem Reap", "siem reab": "Siem Reap",
    "sihanoukville": "Sihanoukville", "preah sihanouk": "Sihanoukville",
    "kampot": "Kampot",
    "battambang": "Battambang",
    "kep": "Kep",
    "kampong cham": "Kampong Cham", "kompong cham": "Kampong Cham",
}

DISTRICT_CITY = {
    "Sala Kamreuk": "Siem Reap", "Svay Dankum": "Siem Reap", "Sla Kram": "Siem Reap",
    "Kok Chak": "Siem Reap", "Chreav": "Siem Reap", "Nokor Thum": "Siem Reap",
    "Krabei Riel": "Siem Reap",
    "Sihanoukville": "Sihanoukville", "Kampot": "Kampot", "Kep": "Kep",
}


def _alias_patterns(table):
    # longest alias first within a segment
    return [
        (re.compile(r"(?<![a-z0-9])" + re.escape(alias) + r"(?![a-z0-9])"), canonical)
        for alias, canonical in sorted(table.items(), key=lambda kv: -len(kv[0]))
    ]


BREADCRUMB_RE = re.compile(r"\s*[>»|]\s*")
_DISTRICT_PATTERNS = _alias_patterns(DISTRICT_ALIASES)
_CITY_PATTERNS = _alias_patterns(CITY_ALIASES)


def _match_alias(patterns, text: str) -> Optional[str]:
    lower = text.lower()
    for rx, canonical in patterns:
        if rx.search(lower):
            return canonical
    return None


def parse_district(text: Optional[str], strict: bool = False) -> Optional[str]:
    """Normalise a location string to a canonical district name.

    Breadcrumbs ("Rent > Phnom Penh > BKK1") are read right to left and
    address lists ("BKK 1, Chamkar Mon, Phnom Penh") left to right, so the
    most specific known segment wins. Unknown short strings are returned
    trimmed unless ``strict`` is set.
    """
    if not text:
        return None
    cleaned = " ".join(text.split())
    if BREADCRUMB_RE.search(cleaned):
        segments = [s.strip() for s in BREADCRUMB_RE.split(cleaned) if s.strip()]
        segments.reverse()
    else:
        segments = [s.strip() for s in cleaned.split(",") if s.strip()]
    for segment in segments:
        found = _match_alias(_DISTRICT_PATTERNS, segment)
        if found:
            return found
    found = _match_alias(_DISTRICT_PATTERNS, cleaned)
    if found or strict:
        return found
    first = segments[0] if segments else cleaned
    if _match_alias(_CITY_PATTERNS, first) or first.lower() == "cambodia":
        return None
    if 0 < len(first) < 50:
        return first
    return None


def resolve_district(*candidates: Optional[str]) -> Optional[str]:
    """First known district across candidates, else the first loose parse."""
    for text in candidates:
        found = parse_district(text, strict=True)
        if found:
            return found
    for text in candidates:
        found = parse_district(text)
        if found:
            return found
    return None


def parse_city(text: Optional[str], district: Optional[str] = None) -> str:
    if text:
        found = _match_alias(_CITY_PATTERNS, text)
        if found:
            return found
    if district and district in DISTRICT_CITY:
        return DISTRICT_CITY[district]
    return config.DEFAULT_CITY


def reverse_district_aliases(district: str) -> List[str]:
    """All stored spellings that normalise to the same district as ``district``."""
    if not district:
        return []
    canonical = parse_district(district, strict=True) or district.strip()
    target = canonical.lower()
    names = {district.strip(), canonical}
    for alias, name in DISTRICT_ALIASES.items():
        if name.lower() == target:
            names.add(name)
            names.add(alias)
            names.add(alias.title())
            names.add(alias.upper())
    return sorted(names)


# ---------- amenities ----------

AMENITY_PATTERNS = [
    (re.compile(r"\bswimming\s*pool\b", re.I), "Swimming Pool"),
    (re.compile(r"\bpool\b(?!\s*table)", re.I), "Swimming Pool"),
    (re.compile(r"\bgym\b", re.I), "Gym"),
    (re.compile(r"\bfitness\b", re.I), "Fitness Center"),
    (re.compile(r"\bsauna\b", re.I), "Sauna"),
    (re.compile(r"\bsteam\s*room\b", re.I), "Steam Room"),
    (re.compile(r"\bcar\s*park", re.I), "Car Parking"),
    (re.compile(r"\bparking\b", re.I), "Parking"),
    (re.compile(r"\bbalcon", re.I), "Balcony"),
    (re.compile(r"\brooftop\b", re.I), "Rooftop"),
    (re.compile(r"\bterrace\b", re.I), "Terrace"),
    (re.compile(r"\bgarden\b", re.I), "Garden"),
    (re.compile(r"\bplayground\b", re.I), "Playground"),
    (re.compile(r"\bbbq\b|barbecue", re.I), "BBQ Area"),
    (re.compile(r"\belevator\b|\blift\b", re.I), "Elevator"),
    (re.compile(r"\bsecurity\b|\bguard\b", re.I), "24h Security"),
    (re.compile(r"\bcctv\b", re.I), "CCTV"),
    (re.compile(r"\bco[- ]?working\b", re.I), "Co-working Space"),
    (re.compile(r"\bfull(?:y)?\s*furnish", re.I), "Fully Furnished"),
    (re.compile(r"\bsemi[- ]?furnish", re.I), "Semi-Furnished"),
    (re.compile(r"\bunfurnish", re.I), "Unfurnished"),
    (re.compile(r"\bwash(?:ing)?\s*machine", re.I), "Washing Machine"),
    (re.compile(r"\bair[- ]?con", re.I), "Air Conditioning"),
    (re.compile(r"\bhot\s*water\b", re.I), "Hot Water"),
    (re.compile(r"\bbathtub\b", re.I), "Bathtub"),
    (re.compile(r"\bwi[- ]?fi\b|\binternet\b", re.I), "WiFi/Internet"),
    (re.compile(r"\bcable\s*tv\b", re.I), "Cable TV"),
    (re.compile(r"\bkitchen\b", re.I), "Kitchen"),
    (re.compile(r"\brefrigerator\b|\bfridge\b", re.I), "Refrigerator"),
    (re.compile(r"\bcleaning\s*service|\bhousekeeping\b", re.I), "Cleaning Service"),
    (re.compile(r"\blaundry\b", re.I), "Laundry"),
    (re.compile(r"\bpets?\s*(?:allowed|friendly)\b", re.I), "Pet Friendly"),
]


def parse_amenities(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return sorted({label for rx, label in AMENITY_PATTERNS if rx.search(text)})


# ---------- posted date ----------

RELATIVE_RE = re.compile(
    r"(\d+)\s*(minutes?|mins?|m|hours?|hrs?|h|days?|d|weeks?|wks?|w|months?|mos?)\s*ago", re.I
)
MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
MONTH_DAY_RE = re.compile(
    r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(\d{4}))?\b",
    re.I,
)
DAY_MONTH_RE = re.compile(
    r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?(?:,?\s+(\d{4}))?\b",
    re.I,
)


def _relative_delta(n: int, unit: str) -> timedelta:
    u = unit.lower()
    if u.startswith("mo"):
        return timedelta(days=30 * n)
    if u.startswith("m"):
        return timedelta(minutes=n)
    if u.startswith("h"):
        return timedelta(hours=n)
    if u.startswith("d"):
        return timedelta(days=n)
    return timedelta(weeks=n)


def _absolute(month: int, day: int, year: Optional[int], now: datetime) -> Optional[datetime]:
    try:
        posted = datetime(year or now.year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None
    # "Dec 30" read in January belongs to last year
    if year is None and posted > now:
        posted = posted.replace(year=posted.year - 1)
    return posted


def parse_posted_date(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Relative ("3d ago"), then month/day ("Mar 5", "5 March 2025"), then ISO."""
    if not text:
        return None
    now = now or datetime.now(timezone.utc)
    t = " ".join(text.split())
    lower = t.lower()

    if "just now" in lower or lower == "today":
        return now
    if lower == "yesterday":
        return now - timedelta(days=1)

    m = RELATIVE_RE.search(t)
    if m:
        return now - _relative_delta(int(m.group(1)), m.group(2))

    m = MONTH_DAY_RE.search(t)
    if m:
        return _absolute(MONTHS[m.group(1).lower()[:3]], int(m.group(2)), safe_int(m.group(3)), now)
    m = DAY_MONTH_RE.search(t)
    if m:
        return _absolute(MONTHS[m.group(2).lower()[:3]], int(m.group(1)), safe_int(m.group(3)), now)

    try:
        parsed = datetime.fromisoformat(t.replace("Z", "+00:00"))
    except ValueError:
        return None
    parsed = as_utc(parsed)
    if parsed.year < 2000:
        return None
    return parsed


# ---------- images ----------

THUMBNAIL_RE = re.compile(
    r"(thumb|thumbnail|/small/|/s_|_small\.|-\d{2,3}x\d{2,3}(?=\.[a-z]{3,4}$)|[?&](?:w|width)=\d{2,3}(?:&|$))",
    re.I,
)
NON_PHOTO_RE = re.compile(r"(logo|icon|avatar|placeholder|sprite|blank\.gif|data:image)", re.I)


def clean_image_urls(urls: Iterable[Optional[str]], limit: Optional[int] = None) -> List[str]:
    """De-duplicate listing photos and drop thumbnails, logos and icons."""
    out: List[str] = []
    seen = set()
    for url in urls:
        if not url:
            continue
        url = url.strip()
        if url.startswith("//"):
            url = "https:" + url
        if not url.startswith("http"):
            continue
        if NON_PHOTO_RE.search(url) or THUMBNAIL_RE.search(url):
            continue
        key = url.split("?", 1)[0].split("#", 1)[0]
        if key in seen:
            continue
        seen.add(key)
        out.append(url)
        if limit and len(out) >= limit:
            break
    return out
