# tests/test_events.py
import json

import pytest

from rentalindex.errors import JobCancelled
from rentalindex.events import (
    CompleteEvent, ErrorEvent, EventChannel, JobReporter, LogEvent, ProgressEvent, sse_frame,
)


def progress_of(channel):
    return [e for e in channel.drain() if isinstance(e, ProgressEvent)]


def test_log_events_carry_stage_and_meta():
    channel = EventChannel()
    reporter = JobReporter(channel, stage="discover")
    reporter.info("Page 1", {"url": "https://x"})
    reporter.for_stage("process").warn("slow")
    events = channel.drain()
    assert [(e.level, e.stage, e.message) for e in events] == [
        ("info", "discover", "Page 1"),
        ("warn", "process", "slow"),
    ]
    assert events[0].meta == {"url": "https://x"}
    assert "meta" not in events[1].payload()


def test_percent_never_goes_backwards_within_a_phase():
    channel = EventChannel()
    reporter = JobReporter(channel)
    for pct in (10, 40, 30, 120):
        reporter.progress("discover", pct)
    reporter.progress("process", 5)
    events = progress_of(channel)
    assert [(e.phase, e.percent) for e in events] == [
        ("discover", 10), ("discover", 40), ("discover", 40), ("discover", 100), ("process", 5),
    ]


def test_scoped_reporter_maps_onto_slice():
    channel = EventChannel()
    root = JobReporter(channel)
    root.scoped(0, 15, "run-all").progress("discover", 100)
    process = root.scoped(15, 85, "run-all")
    process.progress("process", 0)
    process.progress("process", 50)
    root.scoped(85, 100, "run-all").progress("index", 100)
    events = progress_of(channel)
    assert [(e.phase, e.percent) for e in events] == [
        ("run-all", 15), ("run-all", 15), ("run-all", 50), ("run-all", 100),
    ]


def test_muted_reporter_logs_without_progress():
    channel = EventChannel()
    muted = JobReporter(channel).muted()
    muted.progress("discover", 50)
    muted.info("still logged")
    events = channel.drain()
    assert len(events) == 1
    assert isinstance(events[0], LogEvent)


def test_cancel_flag_is_shared():
    channel = EventChannel()
    reporter = JobReporter(channel).for_stage("process")
    reporter.check_cancelled()
    channel.cancel.set()
    with pytest.raises(JobCancelled):
        reporter.check_cancelled()
    assert reporter.cancel.is_set()


def test_channel_iteration_stops_after_terminal_event():
    channel = EventChannel()
    reporter = JobReporter(channel)
    reporter.info("hello")
    reporter.complete({"ok": True})
    reporter.info("after the end")
    events = list(channel)
    assert isinstance(events[-1], CompleteEvent)
    assert len(events) == 2
    assert channel.get(timeout=0.01).message == "after the end"
    assert channel.get(timeout=0.01) is None


def test_sse_frames():
    log = sse_frame(LogEvent(level="info", stage="discover", message="hi", timestamp="t"))
    assert log.startswith("data: ")
    assert log.endswith("\n\n")
    assert json.loads(log[len("data: "):]) == {
        "level": "info", "stage": "discover", "message": "hi", "timestamp": "t",
    }

    progress = sse_frame(ProgressEvent(phase="run-all", percent=42.0, label="x"))
    assert progress.startswith("event: progress\ndata: ")

    assert sse_frame(CompleteEvent(result={"a": 1})) == 'event: complete\ndata: {"a": 1}\n\n'
    assert sse_frame(ErrorEvent(error="boom")) == 'event: error\ndata: {"error": "boom"}\n\n'
