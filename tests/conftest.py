# tests/conftest.py
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "0")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from rentalindex import models  # noqa: E402,F401
from rentalindex.db import Base  # noqa: E402
from rentalindex.models import Source  # noqa: E402
from rentalindex.sources.ips_cambodia import IpsCambodiaAdapter  # noqa: E402


@pytest.fixture
def engine():
    # one shared in-memory database per test, visible from job threads
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class FakeFetcher:
    """Serves canned pages by URL; records what was asked for."""

    def __init__(self, pages=None, json_pages=None):
        self.pages = pages or {}
        self.json_pages = json_pages or {}
        self.requested = []
        self.closed = False

    @property
    def requests_made(self):
        return len(self.requested)

    def fetch(self, url, scroll=False):
        self.requested.append(url)
        return self.pages.get(url)

    def fetch_json(self, url, params=None):
        key = (params or {}).get("pathname"), (params or {}).get("page")
        self.requested.append(key)
        return self.json_pages.get(key)

    def close(self):
        self.closed = True


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# ---- canned IPS Cambodia site shared by job and API tests ----

BASE = "https://ips-cambodia.com/listing-details/rental"


def listing_html(title, price):
    return f"""
    <h1>{title}</h1>
    <div class="listing-price">${price} / month</div>
    <div class="property-location">BKK 1, Phnom Penh</div>
    """


PAGES = {
    "https://ips-cambodia.com/rent/": f"""
        <a href="{BASE}/1-condo/">1</a><a href="{BASE}/2-villa/">2</a>
        <a href="{BASE}/3-office/">3</a><a href="{BASE}/4-broken/">4</a>
    """,
    f"{BASE}/1-condo": listing_html("2 Bedroom Condo in BKK 1", 800),
    f"{BASE}/2-villa": listing_html("Villa for rent in BKK 1", 2400),
    f"{BASE}/3-office": listing_html("Office space for rent in BKK 1", 1500),
}


class BrokenAdapter(IpsCambodiaAdapter):
    """Parses normally except for one page that blows up."""

    def scrape_listing(self, url):
        if "broken" in url:
            raise ValueError("unexpected markup")
        return super().scrape_listing(url)


class FailingAdapter:
    source = Source.REALESTATE_KH
    pages_visited = 0

    def discover(self):
        raise RuntimeError("portal API down")

    def scrape_listing(self, url):
        raise AssertionError("not reached")

    def close(self):
        pass


def adapter_factory(source, reporter):
    if source is Source.IPS_CAMBODIA:
        return BrokenAdapter(reporter=reporter, fetcher=FakeFetcher(PAGES))
    return FailingAdapter()
