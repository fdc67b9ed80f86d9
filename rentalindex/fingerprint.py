# rentalindex/fingerprint.py
"""Content fingerprint for listings whose source exposes no stable id."""
import hashlib
from typing import Optional


def compute_fingerprint(title: str, district: Optional[str], bedrooms: Optional[int],
                        property_type, price_monthly_usd: Optional[float],
                        first_image_url: Optional[str]) -> str:
    """SHA-256 over normalised title, district, bedrooms, type, price (to the nearest 10) and first image."""
    parts = [
        (title or "").lower().strip(),
        (district or "").lower().strip(),
        "" if bedrooms is None else str(bedrooms),
        getattr(property_type, "value", property_type) or "",
        "" if price_monthly_usd is None else str(int(round(price_monthly_usd / 10.0)) * 10),
        (first_image_url or "").lower().strip(),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
