# rentalindex/events.py
"""Job event bus.

A running job writes log and progress events into an ``EventChannel``; a
consumer (the SSE endpoint, the CLI, a test) drains it independently. The
channel also carries the cancel flag a consumer sets when it goes away.
"""
import copy
import json
import logging
import queue
import threading
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterator, List, Optional

from .errors import JobCancelled
from .utils import get_logger, utcnow

logger = get_logger("rentalindex.jobs")

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class LogEvent:
    level: str
    stage: str
    message: str
    meta: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())
    name = "log"

    def payload(self) -> dict:
        data = asdict(self)
        if data["meta"] is None:
            del data["meta"]
        return data


@dataclass
class ProgressEvent:
    phase: str
    percent: float
    label: str
    name = "progress"

    def payload(self) -> dict:
        return asdict(self)


@dataclass
class CompleteEvent:
    result: Any
    name = "complete"

    def payload(self):
        return self.result


@dataclass
class ErrorEvent:
    error: str
    name = "error"

    def payload(self) -> dict:
        return {"error": self.error}


TERMINAL = (CompleteEvent, ErrorEvent)


def sse_frame(event) -> str:
    """Server-sent-events framing: log entries use the default event type."""
    data = json.dumps(event.payload(), default=str)
    if isinstance(event, LogEvent):
        return f"data: {data}\n\n"
    return f"event: {event.name}\ndata: {data}\n\n"


class EventChannel:
    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self.cancel = threading.Event()

    def put(self, event):
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None):
        """Next event, or ``None`` if nothing arrived within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Any]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def __iter__(self) -> Iterator[Any]:
        # blocks until the job posts its terminal event
        while True:
            event = self._queue.get()
            yield event
            if isinstance(event, TERMINAL):
                return


class JobReporter:
    """Structured logger + progress callback handed to every job.

    Events go to the channel and are mirrored to the ``rentalindex.jobs``
    logger. Percent is clamped to be non-decreasing per phase. Derived
    reporters (``for_stage``, ``scoped``, ``muted``) share the channel and
    the clamp state with their parent.
    """

    def __init__(self, channel: Optional[EventChannel] = None, stage: str = "pipeline"):
        self.channel = channel or EventChannel()
        self.stage = stage
        self._lo = 0.0
        self._hi = 100.0
        self._phase: Optional[str] = None
        self._quiet = False
        self._lock = threading.Lock()
        self._last: Dict[str, float] = {}

    def _derive(self, **attrs) -> "JobReporter":
        child = copy.copy(self)
        for key, value in attrs.items():
            setattr(child, key, value)
        return child

    def for_stage(self, stage: str) -> "JobReporter":
        return self._derive(stage=stage)

    def scoped(self, lo: float, hi: float, phase: str) -> "JobReporter":
        """Map this reporter's 0..100 onto ``lo..hi`` of the parent, emitted as ``phase``."""
        span = self._hi - self._lo
        return self._derive(
            _lo=self._lo + span * lo / 100.0,
            _hi=self._lo + span * hi / 100.0,
            _phase=phase,
        )

    def muted(self) -> "JobReporter":
        """Same log stream, no progress events."""
        return self._derive(_quiet=True)

    @property
    def cancel(self) -> threading.Event:
        return self.channel.cancel

    def check_cancelled(self):
        if self.channel.cancel.is_set():
            raise JobCancelled("job cancelled by caller")

    def log(self, level: str, message: str, meta: Optional[Dict[str, Any]] = None):
        logger.log(LEVELS.get(level, logging.INFO), "[%s] %s", self.stage, message)
        self.channel.put(LogEvent(level=level, stage=self.stage, message=message, meta=meta))

    def debug(self, message, meta=None):
        self.log("debug", message, meta)

    def info(self, message, meta=None):
        self.log("info", message, meta)

    def warn(self, message, meta=None):
        self.log("warn", message, meta)

    def error(self, message, meta=None):
        self.log("error", message, meta)

    def progress(self, phase: str, percent: float, label: str = ""):
        if self._quiet:
            return
        percent = min(100.0, max(0.0, float(percent)))
        mapped = self._lo + (self._hi - self._lo) * percent / 100.0
        name = self._phase or phase
        with self._lock:
            mapped = max(mapped, self._last.get(name, 0.0))
            self._last[name] = mapped
        self.channel.put(ProgressEvent(phase=name, percent=round(mapped, 1), label=label))

    def complete(self, result):
        self.channel.put(CompleteEvent(result=result))

    def fail(self, error: str):
        self.channel.put(ErrorEvent(error=error))
