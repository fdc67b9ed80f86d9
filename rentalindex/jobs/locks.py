# rentalindex/jobs/locks.py
"""In-process run locks: at most one run per (phase, source) at a time."""
import threading
from contextlib import contextmanager

_locks = {}
_guard = threading.Lock()


def run_lock(phase: str, source=None) -> threading.Lock:
    key = (phase, getattr(source, "value", source))
    with _guard:
        if key not in _locks:
            _locks[key] = threading.Lock()
        return _locks[key]


@contextmanager
def exclusive(phase: str, source, reporter):
    """Hold the run lock for ``phase``/``source``, waiting behind a run already in flight."""
    lock = run_lock(phase, source)
    if not lock.acquire(blocking=False):
        label = f"{phase} {getattr(source, 'value', source)}" if source else phase
        reporter.info(f"Waiting for the running {label} job to finish")
        lock.acquire()
    try:
        yield
    finally:
        lock.release()
