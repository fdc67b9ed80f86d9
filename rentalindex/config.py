# rentalindex/config.py
"""Pipeline configuration.

Caps, politeness delays, and source toggles, read from the environment
(a local ``.env`` is honoured). Values are module-level constants so jobs
can import them directly.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _env_float(name, default):
    return float(os.getenv(name, str(default)))


def _env_flag(name, default="0"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# sources enabled for discover/process-queue; KHMER24 needs a local browser
ENABLED_SOURCES = [
    s.strip().upper()
    for s in os.getenv("RENTALS_ENABLED_SOURCES", "REALESTATE_KH,IPS_CAMBODIA,KHMER24").split(",")
    if s.strip()
]

# caps per run
DISCOVER_MAX_PAGES = _env_int("DISCOVER_MAX_PAGES", 3)
DISCOVER_MAX_URLS = _env_int("DISCOVER_MAX_URLS", 200)
PROCESS_QUEUE_MAX = _env_int("PROCESS_QUEUE_MAX", 25)
REQUEST_BUDGET = _env_int("REQUEST_BUDGET", 500)

# politeness
REQUEST_DELAY_BASE_SEC = _env_float("REQUEST_DELAY_BASE_SEC", 1.2)
REQUEST_DELAY_JITTER_SEC = _env_float("REQUEST_DELAY_JITTER_SEC", 0.8)
REQUEST_TIMEOUT_SEC = _env_float("REQUEST_TIMEOUT_SEC", 15)
BROWSER_WAIT_SEC = _env_float("BROWSER_WAIT_SEC", 3)
HEADLESS = os.getenv("HEADLESS", "1") == "1"
SCRAPE_PROXY = os.getenv("SCRAPE_PROXY") or None

USER_AGENT = os.getenv(
    "RENTALS_USER_AGENT",
    "RentalIndexBot/1.0 (+https://example.org/rentals; research-only)",
)
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

# orchestration
SOURCE_CONCURRENCY = _env_int("SOURCE_CONCURRENCY", 2)
STALE_DAYS = _env_int("STALE_DAYS", 7)
SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED")
SCHEDULE_HOURS = _env_int("SCHEDULE_HOURS", 24)

# parsing
DEFAULT_CITY = os.getenv("DEFAULT_CITY", "Phnom Penh")
KHR_PER_USD = _env_float("KHR_PER_USD", 4100)
MIN_MONTHLY_USD = 50
MAX_MONTHLY_USD = 15_000


def is_source_enabled(source) -> bool:
    name = getattr(source, "value", source)
    return str(name).upper() in ENABLED_SOURCES
