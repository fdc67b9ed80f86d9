# rentalindex/sources/registry.py
from typing import Optional

from .. import config
from ..errors import SourceDisabledError, UnknownSourceError
from ..events import JobReporter
from ..models import Source
from .ips_cambodia import IpsCambodiaAdapter
from .khmer24 import Khmer24Adapter
from .realestate_kh import RealestateKhAdapter

ADAPTERS = {
    Source.KHMER24: Khmer24Adapter,
    Source.REALESTATE_KH: RealestateKhAdapter,
    Source.IPS_CAMBODIA: IpsCambodiaAdapter,
}


def parse_source(value) -> Source:
    if isinstance(value, Source):
        return value
    try:
        return Source(str(value).strip().upper())
    except ValueError:
        raise UnknownSourceError(f"Unknown source: {value!r}") from None


def enabled_sources():
    return [s for s in Source if config.is_source_enabled(s)]


def get_adapter(source, reporter: Optional[JobReporter] = None, fetcher=None):
    """Build the adapter for ``source``; its fetcher observes the reporter's cancel flag."""
    source = parse_source(source)
    if not config.is_source_enabled(source):
        raise SourceDisabledError(f"Source {source.value} is disabled")
    return ADAPTERS[source](reporter=reporter, fetcher=fetcher)
