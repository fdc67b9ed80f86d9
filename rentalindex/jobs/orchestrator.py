# rentalindex/jobs/orchestrator.py
"""Job dispatch, the ``run-all`` composite and background execution.

``run-all`` chains discover, process-queue and build-index, mapping each
phase onto a slice of one 0-100 progress scale. Sources within a phase run
concurrently (bounded by ``SOURCE_CONCURRENCY``); one source failing does
not stop the others, but a phase where every source failed aborts the run.
"""
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

from .. import config
from ..db import SessionLocal
from ..errors import JobCancelled, PipelineError
from ..events import EventChannel, JobReporter
from ..models import Source
from ..schemas import RunAllResult
from ..sources.registry import enabled_sources, parse_source
from ..utils import get_logger
from .build_index import build_index_job
from .discover import discover_job
from .mark_stale import mark_stale_job
from .process_queue import process_queue_job

logger = get_logger("rentalindex.orchestrator")

JOBS = ("discover", "process-queue", "build-index", "run-all", "mark-stale")
SOURCE_JOBS = ("discover", "process-queue")

# overall progress slices for run-all
DISCOVER_SLICE = (0, 15)
PROCESS_SLICE = (15, 85)
INDEX_SLICE = (85, 100)


def validate_job(job: str, source=None) -> Optional[Source]:
    """Check a job request up front; returns the parsed source if one was given."""
    if job not in JOBS:
        raise PipelineError(f"Unknown job {job!r}; expected one of {', '.join(JOBS)}")
    if job in SOURCE_JOBS and not source:
        raise PipelineError(f"Job {job} requires a source")
    return parse_source(source) if source else None


def _for_each_source(sources: List[Source], work: Callable, reporter: JobReporter, label: str):
    """Run ``work(source, reporter)`` for every source; returns ``(results, errors)``.

    With several sources the per-source reporters are muted and progress is
    reported here, one step per finished source.
    """
    results: Dict[Source, object] = {}
    errors: Dict[Source, str] = {}
    if not sources:
        return results, errors
    if len(sources) == 1:
        source = sources[0]
        try:
            results[source] = work(source, reporter)
        except JobCancelled:
            raise
        except Exception as e:
            errors[source] = str(e)
        return results, errors

    cancelled = None
    workers = max(1, min(config.SOURCE_CONCURRENCY, len(sources)))
    reporter.progress(label, 0, f"{label}: {len(sources)} sources")
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(work, s, reporter.muted()): s for s in sources}
        for done, fut in enumerate(as_completed(futures), start=1):
            source = futures[fut]
            try:
                results[source] = fut.result()
            except JobCancelled as e:
                cancelled = e
            except Exception as e:
                errors[source] = str(e)
                reporter.warn(f"{label} failed for {source.value}: {e}")
            reporter.progress(label, done * 100.0 / len(sources), f"{label}: {source.value} finished")
    if cancelled is not None:
        raise cancelled
    return results, errors


def run_all(source=None, reporter: Optional[JobReporter] = None, session_factory=SessionLocal,
            adapter_factory: Optional[Callable] = None) -> RunAllResult:
    reporter = reporter or JobReporter()
    sources = [parse_source(source)] if source else enabled_sources()
    if not sources:
        raise PipelineError("No sources enabled")
    result = RunAllResult()

    def adapter_for(src, sub):
        return adapter_factory(src, sub) if adapter_factory else None

    def discover(src, sub):
        return discover_job(src, reporter=sub, session_factory=session_factory, adapter=adapter_for(src, sub))

    reporter.info(f"Run-all over {', '.join(s.value for s in sources)}")
    discovered, errors = _for_each_source(sources, discover, reporter.scoped(*DISCOVER_SLICE, "run-all"), "discover")
    result.discover = {s.value: r for s, r in discovered.items()}
    result.failed_sources.update({s.value: e for s, e in errors.items()})
    if not discovered:
        raise PipelineError(f"Discover failed for every source: {errors_text(errors)}")

    def process(src, sub):
        return process_queue_job(
            src, urls=discovered[src].urls, reporter=sub,
            session_factory=session_factory, adapter=adapter_for(src, sub),
        )

    processed, errors = _for_each_source(
        list(discovered), process, reporter.scoped(*PROCESS_SLICE, "run-all"), "process"
    )
    result.process = {s.value: r for s, r in processed.items()}
    result.failed_sources.update({s.value: e for s, e in errors.items()})
    if not processed:
        raise PipelineError(f"Process-queue failed for every source: {errors_text(errors)}")

    reporter.check_cancelled()
    result.index = build_index_job(
        reporter=reporter.scoped(*INDEX_SLICE, "run-all"), session_factory=session_factory
    )
    reporter.progress("run-all", 100, "Done")
    return result


def errors_text(errors: Dict[Source, str]) -> str:
    return "; ".join(f"{s.value}: {e}" for s, e in errors.items())


def run_job(job: str, source=None, reporter: Optional[JobReporter] = None,
            session_factory=SessionLocal, adapter_factory: Optional[Callable] = None):
    """Run one job synchronously and return its result model."""
    parsed = validate_job(job, source)
    reporter = reporter or JobReporter()
    adapter = adapter_factory(parsed, reporter) if adapter_factory and job in SOURCE_JOBS else None

    if job == "discover":
        return discover_job(parsed, reporter=reporter, session_factory=session_factory, adapter=adapter)
    if job == "process-queue":
        return process_queue_job(parsed, reporter=reporter, session_factory=session_factory, adapter=adapter)
    if job == "build-index":
        return build_index_job(reporter=reporter, session_factory=session_factory)
    if job == "mark-stale":
        return mark_stale_job(reporter=reporter, session_factory=session_factory)
    return run_all(parsed, reporter=reporter, session_factory=session_factory, adapter_factory=adapter_factory)


def run_job_into_channel(job: str, source, channel: EventChannel, session_factory=SessionLocal,
                         adapter_factory: Optional[Callable] = None):
    """Run a job and finish the channel with exactly one complete or error event."""
    reporter = JobReporter(channel)
    try:
        result = run_job(job, source, reporter, session_factory, adapter_factory)
    except PipelineError as e:
        reporter.fail(str(e))
    except Exception as e:
        logger.exception("Job %s crashed", job)
        reporter.fail(f"{type(e).__name__}: {e}")
    else:
        reporter.complete(result.dump())


def start_job_thread(job: str, source, channel: EventChannel, session_factory=SessionLocal,
                     adapter_factory: Optional[Callable] = None) -> threading.Thread:
    thread = threading.Thread(
        target=run_job_into_channel,
        args=(job, source, channel, session_factory, adapter_factory),
        name=f"job-{job}",
        daemon=True,
    )
    thread.start()
    return thread
