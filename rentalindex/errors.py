# rentalindex/errors.py


class PipelineError(Exception):
    """Base class for pipeline failures surfaced to job callers."""


class UnknownSourceError(PipelineError):
    pass


class SourceDisabledError(PipelineError):
    pass


class JobCancelled(PipelineError):
    """Raised when the caller aborted the run before the next fetch."""
