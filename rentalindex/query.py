# rentalindex/query.py
"""Listing search filters: query parameters to SQLAlchemy conditions."""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import asc, desc, or_

from .errors import PipelineError
from .models import Listing, PropertyType, Source
from .parse import reverse_district_aliases

# virtual property-type filter values and the concrete types they stand for
PROPERTY_TYPE_ALIASES = {
    "LONG_TERM": {
        PropertyType.CONDO,
        PropertyType.APARTMENT,
        PropertyType.VILLA,
        PropertyType.TOWNHOUSE,
        PropertyType.PENTHOUSE,
    },
}

SORT_FIELDS = {
    "lastSeenAt": Listing.last_seen_at,
    "firstSeenAt": Listing.first_seen_at,
    "priceMonthlyUsd": Listing.price_monthly_usd,
    "title": Listing.title,
    "district": Listing.district,
    "sizeSqm": Listing.size_sqm,
    "postedAt": Listing.posted_at,
}
DEFAULT_SORT = "lastSeenAt"
MAX_LIMIT = 100


class InvalidFilter(PipelineError):
    pass


@dataclass
class ListingQuery:
    source: Optional[str] = None
    property_type: Optional[str] = None
    district: Optional[str] = None
    search: Optional[str] = None
    sort: str = DEFAULT_SORT
    order: str = "desc"
    active_only: bool = False


def resolve_property_types(value: str) -> List[PropertyType]:
    key = value.strip().upper().replace("-", "_")
    if key in PROPERTY_TYPE_ALIASES:
        return sorted(PROPERTY_TYPE_ALIASES[key], key=lambda p: p.value)
    try:
        return [PropertyType(key)]
    except ValueError:
        raise InvalidFilter(f"Unknown propertyType: {value}") from None


def build_listing_filters(q: ListingQuery) -> list:
    conds = []
    if q.source:
        try:
            conds.append(Listing.source == Source(q.source.upper()))
        except ValueError:
            raise InvalidFilter(f"Unknown source: {q.source}") from None
    if q.property_type:
        conds.append(Listing.property_type.in_(resolve_property_types(q.property_type)))
    if q.district:
        conds.append(Listing.district.in_(reverse_district_aliases(q.district)))
    if q.search:
        like = f"%{q.search}%"
        conds.append(or_(Listing.title.ilike(like), Listing.district.ilike(like), Listing.city.ilike(like)))
    if q.active_only:
        conds.append(Listing.is_active.is_(True))
    return conds


def build_order_by(q: ListingQuery):
    column = SORT_FIELDS.get(q.sort, SORT_FIELDS[DEFAULT_SORT])
    direction = asc if q.order == "asc" else desc
    # id breaks ties so pages are stable
    return [direction(column), direction(Listing.id)]
