# rentalindex/jobs/mark_stale.py
from datetime import timedelta
from typing import Optional

from .. import config, crud
from ..db import SessionLocal
from ..events import JobReporter
from ..schemas import MarkStaleResult
from ..utils import utcnow
from .locks import exclusive
from .runs import recorded_run


def mark_stale_job(stale_days: Optional[int] = None, reporter: Optional[JobReporter] = None,
                   session_factory=SessionLocal) -> MarkStaleResult:
    """Soft-deactivate listings not seen for ``stale_days``; snapshots are kept."""
    stale_days = config.STALE_DAYS if stale_days is None else stale_days
    reporter = (reporter or JobReporter()).for_stage("mark-stale")
    cutoff = utcnow() - timedelta(days=stale_days)

    with exclusive("mark-stale", None, reporter), \
            recorded_run(session_factory, "MARK_STALE", None, reporter) as (db, run, counts):
        reporter.info(f"Marking listings stale if last seen before {cutoff.date().isoformat()} ({stale_days} days)")
        reporter.progress("mark-stale", 0, "Scanning")
        deactivated, already_inactive = crud.mark_stale(db, cutoff)
        counts["updated_count"] = deactivated
        if deactivated:
            reporter.info(f"Deactivated {deactivated} stale listings")
        else:
            reporter.info(f"No stale listings; all active listings seen within {stale_days} days")
        reporter.progress("mark-stale", 100, f"{deactivated} deactivated")
        return MarkStaleResult(deactivated=deactivated, already_inactive=already_inactive, cutoff_date=cutoff)
