# rentalindex/fetch.py
"""Polite page retrieval for source adapters.

``HttpFetcher`` is a plain ``requests`` client for sites without bot
mitigation; ``BrowserFetcher`` renders pages in headless Chromium through
Playwright for sites that need JavaScript before the DOM is readable.

Both enforce a minimum delay between requests to the same site, a per-run
request budget and a timeout. Fetchers built for the same site share one
clock, so separate phases or concurrent jobs never shorten the gap.
Transport problems are logged and reported as ``None``; the only exception
a fetch raises is ``JobCancelled``, and only before a new request goes out.
"""
import random
import threading
import time
from typing import Any, Dict, Optional

import requests
from playwright.sync_api import sync_playwright, Error as PWError, TimeoutError as PWTimeout

from . import config
from .errors import JobCancelled
from .utils import get_logger

logger = get_logger("rentalindex.fetch")


class _SiteClock:
    def __init__(self):
        self.lock = threading.Lock()
        self.last_request_at: Optional[float] = None


_site_clocks: Dict[str, _SiteClock] = {}
_site_clocks_lock = threading.Lock()


def site_clock(site: str) -> _SiteClock:
    """The request clock shared by every fetcher for ``site``."""
    with _site_clocks_lock:
        return _site_clocks.setdefault(site, _SiteClock())


class _Politeness:
    """Budget owned by one fetcher; the delay clock is per site, or private without one."""

    def __init__(self, cancel: Optional[threading.Event], budget: int,
                 delay_base: float, delay_jitter: float, site: Optional[str] = None):
        self.cancel = cancel or threading.Event()
        self.budget = budget
        self.delay_base = delay_base
        self.delay_jitter = delay_jitter
        self.requests_made = 0
        self.clock = site_clock(site) if site else _SiteClock()

    def before_request(self, url: str) -> bool:
        """Wait out the politeness gap. False when the budget is spent."""
        if self.cancel.is_set():
            raise JobCancelled("cancelled before fetching %s" % url)
        if self.requests_made >= self.budget:
            logger.warning("Request budget of %d exhausted, skipping %s", self.budget, url)
            return False
        # held through the wait: one request per site at a time
        with self.clock.lock:
            if self.clock.last_request_at is not None:
                gap = self.delay_base + random.uniform(0, self.delay_jitter)
                remaining = gap - (time.monotonic() - self.clock.last_request_at)
                # Event.wait doubles as an interruptible sleep
                if remaining > 0 and self.cancel.wait(remaining):
                    raise JobCancelled("cancelled before fetching %s" % url)
            self.requests_made += 1
            self.clock.last_request_at = time.monotonic()
        return True


class HttpFetcher:
    def __init__(self, cancel: Optional[threading.Event] = None,
                 budget: int = None, timeout: float = None,
                 delay_base: float = None, delay_jitter: float = None,
                 session: Optional[requests.Session] = None, site: Optional[str] = None):
        self.polite = _Politeness(
            cancel,
            config.REQUEST_BUDGET if budget is None else budget,
            config.REQUEST_DELAY_BASE_SEC if delay_base is None else delay_base,
            config.REQUEST_DELAY_JITTER_SEC if delay_jitter is None else delay_jitter,
            site,
        )
        self.timeout = config.REQUEST_TIMEOUT_SEC if timeout is None else timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": config.USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        })
        if config.SCRAPE_PROXY:
            self.session.proxies.update({"http": config.SCRAPE_PROXY, "https": config.SCRAPE_PROXY})

    @property
    def requests_made(self) -> int:
        return self.polite.requests_made

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None,
             accept: Optional[str] = None) -> Optional[requests.Response]:
        if not self.polite.before_request(url):
            return None
        headers = {"Accept": accept} if accept else None
        try:
            r = self.session.get(url, params=params, headers=headers,
                                 timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            logger.warning("Fetch failed %s: %s", url, e)
            return None
        if not r.ok:
            logger.warning("Fetch %s -> HTTP %d", url, r.status_code)
            return None
        return r

    def fetch(self, url: str) -> Optional[str]:
        r = self._get(url)
        if r is None:
            return None
        content_type = r.headers.get("content-type", "")
        if content_type and "html" not in content_type and "text/plain" not in content_type:
            logger.warning("Fetch %s -> unexpected content type %s", url, content_type)
            return None
        return r.text

    def fetch_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        r = self._get(url, params=params, accept="application/json")
        if r is None:
            return None
        try:
            return r.json()
        except ValueError as e:
            logger.warning("Invalid JSON from %s: %s", url, e)
            return None

    def close(self):
        self.session.close()


class BrowserFetcher:
    """Headless Chromium fetcher; the browser is launched on first use.

    Playwright's sync API is bound to the thread that started it, so an
    instance must be created, used and closed on one thread.
    """

    def __init__(self, cancel: Optional[threading.Event] = None,
                 budget: int = None, timeout: float = None,
                 wait_sec: float = None, headless: bool = None, site: Optional[str] = None):
        self.polite = _Politeness(
            cancel,
            config.REQUEST_BUDGET if budget is None else budget,
            config.REQUEST_DELAY_BASE_SEC,
            config.REQUEST_DELAY_JITTER_SEC,
            site,
        )
        # page loads get twice the plain HTTP timeout
        self.timeout_ms = int((config.REQUEST_TIMEOUT_SEC if timeout is None else timeout) * 2000)
        self.wait_ms = int((config.BROWSER_WAIT_SEC if wait_sec is None else wait_sec) * 1000)
        self.headless = config.HEADLESS if headless is None else headless
        self._pw = None
        self._browser = None
        self._context = None

    @property
    def requests_made(self) -> int:
        return self.polite.requests_made

    def _ensure_context(self):
        if self._context is not None:
            return self._context
        self._pw = sync_playwright().start()
        launch_args = {
            "headless": self.headless,
            "args": ["--disable-blink-features=AutomationControlled", "--no-sandbox"],
        }
        if config.SCRAPE_PROXY:
            launch_args["proxy"] = {"server": config.SCRAPE_PROXY}
        self._browser = self._pw.chromium.launch(**launch_args)
        self._context = self._browser.new_context(
            user_agent=config.BROWSER_USER_AGENT,
            viewport={"width": 1280, "height": 800},
            locale="en-US",
        )
        logger.info("Browser started (headless=%s)", self.headless)
        return self._context

    def fetch(self, url: str, scroll: bool = False) -> Optional[str]:
        if not self.polite.before_request(url):
            return None
        page = None
        try:
            page = self._ensure_context().new_page()
            response = page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            if response is None or response.status >= 400:
                logger.warning("Browser fetch %s -> HTTP %s", url, response.status if response else "none")
                return None
            # bot challenge and lazy content settle after load
            page.wait_for_timeout(self.wait_ms)
            if scroll:
                page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
                page.wait_for_timeout(1500)
            return page.content()
        except PWTimeout as e:
            logger.warning("Timeout on %s: %s", url, e)
            return None
        except PWError as e:
            logger.warning("Browser fetch failed %s: %s", url, e)
            return None
        finally:
            if page is not None:
                page.close()

    def close(self):
        if self._context is not None:
            self._context.close()
            self._context = None
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._pw is not None:
            self._pw.stop()
            self._pw = None
