# rentalindex/utils.py
"""Shared utilities: logging setup and small time/number helpers."""
import os
import logging
from datetime import datetime, timezone
from dotenv import load_dotenv

load_dotenv()

def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("rentalindex")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def safe_number(value):
    if value is None or value == "":
        return None
    try:
        n = float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return None
    if n != n or n in (float("inf"), float("-inf")):
        return None
    return n

def safe_int(value):
    n = safe_number(value)
    if n is None:
        return None
    return int(round(n))


def as_utc(dt):
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)
