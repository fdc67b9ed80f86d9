# rentalindex/jobs/discover.py
from typing import Optional

from ..db import SessionLocal
from ..events import JobReporter
from ..schemas import DiscoverResult
from ..sources.registry import get_adapter, parse_source
from .locks import exclusive
from .runs import recorded_run


def discover_job(source, reporter: Optional[JobReporter] = None,
                 session_factory=SessionLocal, adapter=None) -> DiscoverResult:
    """Enumerate candidate listing URLs for one source."""
    source = parse_source(source)
    reporter = (reporter or JobReporter()).for_stage("discover")

    with exclusive("discover", source, reporter), \
            recorded_run(session_factory, "DISCOVER", source, reporter) as (db, run, counts):
        adapter = adapter or get_adapter(source, reporter)
        reporter.info(f"Discovering {source.value} listings")
        reporter.progress("discover", 0, f"Starting {source.value}")
        try:
            urls = adapter.discover()
        finally:
            adapter.close()
        counts["discovered_count"] = len(urls)
        reporter.progress("discover", 100, f"{len(urls)} URLs discovered")
        return DiscoverResult(
            job_run_id=run.id,
            source=source,
            discovered=len(urls),
            pages_visited=adapter.pages_visited,
            urls=urls,
        )
