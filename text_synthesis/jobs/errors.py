"""
Exception types for the synthesis job queue.

Job-level failures (anything raised while synthesizing a single job) are
recorded on the job and never escape a batch. Only persistence failures
abort a batch or sweep cycle.
"""


class SynthesisQueueError(Exception):
    """Base class for all queue errors."""


class ValidationError(SynthesisQueueError, ValueError):
    """A synthesis request payload is malformed and was not enqueued."""


class ClaimConflict(SynthesisQueueError):
    """A job could not be claimed because it is no longer waiting."""

    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} is not waiting")
        self.job_id = job_id


class PersistenceError(SynthesisQueueError):
    """The job database could not be read or written."""


class SynthesisError(SynthesisQueueError):
    """A synthesis call failed. The message is stored on the job verbatim."""


class TransientAPIError(SynthesisError):
    """Network, rate-limit or API-side failure of a synthesis call."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(SynthesisError):
    """Missing or invalid endpoint, credential or queue setting."""
