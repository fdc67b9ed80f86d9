# rentalindex/classify.py
"""Property type classification for rental listings.

Keyword heuristics over title and description. Non-residential ads
(commercial space, land) classify as ``None`` and are dropped by
``should_ingest``.
"""
import re
from typing import Optional

from .models import PropertyType

# most-specific first
PENTHOUSE_KEYWORDS = ["penthouse"]
SERVICED_APARTMENT_KEYWORDS = ["serviced apartment", "service apartment", "serviced-apartment"]
TOWNHOUSE_KEYWORDS = ["townhouse", "town house", "link house", "shophouse for living"]
VILLA_KEYWORDS = ["twin villa", "queen villa", "king villa"]
CONDO_KEYWORDS = ["condo", "condominium"]
APARTMENT_KEYWORDS = ["apartment", "flat", "studio"]
HOUSE_KEYWORDS = ["house", "borey", "detached", "home"]

# "villa" / "villas" but not "village"
VILLA_WORD_RE = re.compile(r"\bvillas?\b", re.I)

NON_RESIDENTIAL_KEYWORDS = [
    "shophouse", "shop house", "shop-house",
    "warehouse", "factory", "workshop",
    "office space", "office for rent", "office for sale", "co-working space",
    "commercial space", "commercial property", "commercial building", "commercial for",
    "retail space", "retail shop", "retail for",
    "restaurant for", "hotel for", "guesthouse", "guest house",
    "flat land", "land for", "plot for", "lot for rent", "lot for sale", "land lot",
]

STRONG_NONRES_TITLE_KEYWORDS = [
    "warehouse for", "warehouse space",
    "factory for", "factory space",
    "workshop for", "workshop space",
    "office for rent", "office for sale", "office space for",
    "commercial property for", "commercial space for", "commercial building for",
    "retail shop for", "retail space for",
    "shophouse for", "shop house for",
    "restaurant for rent", "restaurant for sale",
    "hotel for rent", "hotel for sale",
    "guesthouse for", "guest house for",
    "land for rent", "land for sale", "plot for rent", "lot for rent",
]


def _phrases(keywords):
    return [re.compile(r"\b" + re.escape(kw) + r"\b") for kw in keywords]


# whole words only: "island for" is not "land for"
NON_RESIDENTIAL_RES = _phrases(NON_RESIDENTIAL_KEYWORDS)
STRONG_NONRES_TITLE_RES = _phrases(STRONG_NONRES_TITLE_KEYWORDS)


def _contains_any(text: str, keywords) -> bool:
    return any(kw in text for kw in keywords)


def _matches_any(text: str, patterns) -> bool:
    return any(p.search(text) for p in patterns)


def classify_property_type(title: str, description: Optional[str] = None) -> Optional[PropertyType]:
    text = f"{title or ''} {description or ''}".lower()

    # "shophouse for living" is residential; check before the rejection list
    if _contains_any(text, TOWNHOUSE_KEYWORDS[-1:]):
        return PropertyType.TOWNHOUSE
    if _matches_any(text, NON_RESIDENTIAL_RES):
        return None

    if _contains_any(text, PENTHOUSE_KEYWORDS):
        return PropertyType.PENTHOUSE
    if _contains_any(text, SERVICED_APARTMENT_KEYWORDS):
        return PropertyType.SERVICED_APARTMENT
    if _contains_any(text, TOWNHOUSE_KEYWORDS):
        return PropertyType.TOWNHOUSE
    if _contains_any(text, VILLA_KEYWORDS) or VILLA_WORD_RE.search(text):
        return PropertyType.VILLA
    if _contains_any(text, CONDO_KEYWORDS):
        return PropertyType.CONDO
    if _contains_any(text, APARTMENT_KEYWORDS):
        return PropertyType.APARTMENT
    if _contains_any(text, HOUSE_KEYWORDS):
        return PropertyType.OTHER
    # unlabelled residential ads default to APARTMENT
    return PropertyType.APARTMENT


def should_ingest(property_type: Optional[PropertyType]) -> bool:
    return property_type is not None


def is_title_non_residential(title: str) -> bool:
    """Title-only check with high-specificity phrases, safe for bulk reclassification."""
    t = (title or "").lower()
    return _matches_any(t, STRONG_NONRES_TITLE_RES)


def reclassify_property_type(title: str, description: Optional[str] = None,
                             url_slug: Optional[str] = None) -> Optional[PropertyType]:
    # title and URL slug only; description text is not consulted
    if is_title_non_residential(title):
        return None
    return classify_property_type(f"{title} {url_slug or ''}")
