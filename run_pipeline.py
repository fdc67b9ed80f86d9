"""Run a pipeline job from the shell and print its event stream.

    python run_pipeline.py discover --source IPS_CAMBODIA
    python run_pipeline.py run-all
"""
import argparse
import json
import os

from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Ensure SQLAlchemy uses the supported dialect name: convert `postgres://` to `postgresql://`
_pg = os.environ.get("DATABASE_URL") or os.environ.get("POSTGRES_URL")
if _pg and _pg.startswith("postgres://"):
    os.environ["DATABASE_URL"] = "postgresql://" + _pg[len("postgres://"):]


def print_event(event, verbose=False):
    from rentalindex.events import CompleteEvent, ErrorEvent, LogEvent, ProgressEvent

    if isinstance(event, LogEvent):
        if event.level == "debug" and not verbose:
            return
        print(f"[{event.level:<5}] {event.stage}: {event.message}")
    elif isinstance(event, ProgressEvent):
        print(f"  {event.phase} {event.percent:5.1f}%  {event.label}")
    elif isinstance(event, CompleteEvent):
        print(json.dumps(event.result, indent=2, default=str))
    elif isinstance(event, ErrorEvent):
        print(f"ERROR: {event.error}")


def main(argv=None):
    from rentalindex.jobs.orchestrator import JOBS

    parser = argparse.ArgumentParser(description="Run a rental index pipeline job")
    parser.add_argument("job", choices=JOBS)
    parser.add_argument("--source", help="KHMER24, REALESTATE_KH or IPS_CAMBODIA")
    parser.add_argument("--create-tables", action="store_true", help="create missing tables first")
    parser.add_argument("-v", "--verbose", action="store_true", help="print debug events")
    args = parser.parse_args(argv)

    from rentalindex import models  # noqa: F401
    from rentalindex.db import Base, engine
    from rentalindex.errors import PipelineError
    from rentalindex.events import ErrorEvent, EventChannel
    from rentalindex.jobs.orchestrator import start_job_thread, validate_job

    try:
        validate_job(args.job, args.source)
    except PipelineError as e:
        parser.error(str(e))

    if args.create_tables:
        Base.metadata.create_all(bind=engine)

    channel = EventChannel()
    start_job_thread(args.job, args.source, channel)
    failed = False
    try:
        for event in channel:
            print_event(event, args.verbose)
            failed = isinstance(event, ErrorEvent)
    except KeyboardInterrupt:
        print("Cancelling; waiting for in-flight requests...")
        channel.cancel.set()
        for event in channel:
            print_event(event, args.verbose)
        failed = True
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
