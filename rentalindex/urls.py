# rentalindex/urls.py
"""URL canonicalization.

The canonical URL is the identity key for a listing within a source, so the
transformation must be idempotent: canonicalizing a canonical URL returns it
unchanged.
"""
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

TRACKING_PARAMS = {
    "fbclid", "gclid", "gclsrc", "msclkid", "gbraid", "wbraid", "dclid",
}
TRACKING_PREFIXES = ("utm_", "gad_")


def _is_tracking(key: str) -> bool:
    k = key.lower()
    return k in TRACKING_PARAMS or k.startswith(TRACKING_PREFIXES)


def canonicalize_url(raw: str) -> str:
    if not raw:
        return raw
    parts = urlsplit(raw.strip())
    if not parts.scheme or not parts.netloc:
        return raw.strip()

    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    netloc = host
    if parts.port and not (
        (parts.scheme == "http" and parts.port == 80) or (parts.scheme == "https" and parts.port == 443)
    ):
        netloc = f"{host}:{parts.port}"

    path = parts.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking(k)]
    return urlunsplit((parts.scheme.lower(), netloc, path, urlencode(query), ""))


def absolute_url(href: str, origin: str) -> str:
    if href.startswith("//"):
        return "https:" + href
    if href.startswith("http"):
        return href
    return origin.rstrip("/") + "/" + href.lstrip("/")
