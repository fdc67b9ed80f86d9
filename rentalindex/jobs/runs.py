# rentalindex/jobs/runs.py
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from .. import crud
from ..errors import JobCancelled
from ..utils import logger, utcnow


@contextmanager
def recorded_run(session_factory, job_type: str, source, reporter):
    """Open a session and a ``JobRun`` row; close it out as SUCCESS, FAILED or CANCELLED.

    Yields ``(db, run, counts)``; whatever the job puts in ``counts`` is
    written onto the run row. Exceptions are re-raised after recording.
    """
    db = session_factory()
    source_name = getattr(source, "value", source)
    counts = {}
    try:
        run = crud.start_job_run(db, job_type, source_name, utcnow())
        run_id = run.id
        try:
            yield db, run, counts
        except JobCancelled as e:
            reporter.warn(f"{job_type} cancelled")
            _close_out(db, run, run_id, "CANCELLED", counts, str(e))
            raise
        except Exception as e:
            reporter.error(f"{job_type} failed: {e}")
            _close_out(db, run, run_id, "FAILED", counts, str(e))
            raise
        else:
            crud.finish_job_run(db, run, "SUCCESS", utcnow(), counts)
    finally:
        db.close()


def _close_out(db, run, run_id, status, counts, error):
    # a broken connection must not mask the job's own exception
    try:
        db.rollback()
        crud.finish_job_run(db, run, status, utcnow(), counts, error)
    except SQLAlchemyError:
        logger.exception("Could not record %s status for job run %s", status, run_id)
