# rentalindex/jobs/process_queue.py
from typing import Iterable, List, Optional

from .. import config, crud
from ..db import SessionLocal
from ..errors import JobCancelled
from ..events import JobReporter
from ..schemas import ProcessQueueResult
from ..services import ingest_listing
from ..sources.registry import get_adapter, parse_source
from ..urls import canonicalize_url
from ..utils import utcnow
from .locks import exclusive
from .runs import recorded_run


def _queue(db, source, urls: Optional[Iterable], max_items: int) -> List[str]:
    """URLs to scrape this pass.

    Given URLs are taken unseen-first; with none given, the source's active
    listings are refreshed least recently seen first.
    """
    if urls is None:
        return [url for url, _ in crud.known_urls(db, source, max_items)]
    ordered, seen = [], set()
    for u in urls:
        url = canonicalize_url(getattr(u, "url", u))
        if url and url not in seen:
            seen.add(url)
            ordered.append(url)
    known = crud.existing_urls(db, source, ordered)
    fresh = [u for u in ordered if u not in known]
    return (fresh + [u for u in ordered if u in known])[:max_items]


def process_queue_job(source, urls: Optional[Iterable] = None, reporter: Optional[JobReporter] = None,
                      session_factory=SessionLocal, adapter=None,
                      max_items: Optional[int] = None) -> ProcessQueueResult:
    """Scrape and upsert listings for one source.

    Listings not reached in this pass are left alone; deactivation is the
    separate mark-stale sweep.
    """
    source = parse_source(source)
    reporter = (reporter or JobReporter()).for_stage("process")
    max_items = config.PROCESS_QUEUE_MAX if max_items is None else max_items

    with exclusive("process-queue", source, reporter), \
            recorded_run(session_factory, "PROCESS_QUEUE", source, reporter) as (db, run, counts):
        queue = _queue(db, source, urls, max_items)
        result = ProcessQueueResult(job_run_id=run.id, source=source)
        reporter.info(f"Processing {len(queue)} {source.value} listings")
        adapter = adapter or get_adapter(source, reporter)
        try:
            for i, url in enumerate(queue, start=1):
                reporter.check_cancelled()
                reporter.progress("process", (i - 1) * 100.0 / len(queue), f"Scraping {i}/{len(queue)}")
                result.processed += 1
                try:
                    scraped = adapter.scrape_listing(url)
                except JobCancelled:
                    raise
                except Exception as e:
                    # a parser bug on one page must not end the pass
                    result.failed += 1
                    reporter.warn(f"Failed to parse {url}: {e}")
                    continue
                if scraped is None:
                    result.skipped += 1
                    reporter.debug(f"Skipped {url}")
                    continue
                listing_id, inserted = ingest_listing(db, source, url, scraped, utcnow())
                if inserted:
                    result.inserted += 1
                else:
                    result.updated += 1
                result.snapshots += 1
                reporter.debug(
                    f"{'Inserted' if inserted else 'Updated'} {scraped.title[:60]}",
                    {"listingId": listing_id, "price": scraped.price_monthly_usd},
                )
        finally:
            adapter.close()
            counts.update(
                processed_count=result.processed,
                inserted_count=result.inserted,
                updated_count=result.updated,
                snapshot_count=result.snapshots,
                failed_count=result.failed,
            )

        reporter.progress("process", 100, f"{result.processed} processed")
        reporter.info(
            f"Done: {result.inserted} new, {result.updated} updated, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result
