"""Exception hierarchy.

Data errors (malformed lines, unserializable records, non-integer counts)
are never raised: they are counted on the reporter side-channel, logged
and skipped. Everything here is fatal for something:

- ConfigurationError: fatal at startup, no work attempted
- InfrastructureError: fatal for the current step, remaining steps are not run
- StreamError: fatal for the stage that owns the stream
"""

from __future__ import annotations


class StreamJobError(Exception):
    """Base class for all streamjob errors."""


class ConfigurationError(StreamJobError):
    """Raised when the job or process configuration cannot work.

    Examples: no ``--stage``/``--submit-job``, ``--step`` out of range,
    combiner requested for a step that has none, cache capacity < 1,
    missing cloud settings.
    """


class StreamError(StreamJobError):
    """Raised in a consumer when the producing stage failed mid-stream.

    The original exception is chained as ``__cause__``.
    """


class InfrastructureError(StreamJobError):
    """Raised when an external collaborator fails while running a step."""


class StreamingJarNotFoundError(InfrastructureError):
    """Raised when the hadoop streaming jar cannot be located."""


class FsCommandError(InfrastructureError):
    """Raised when a ``hadoop fs`` command exits non-zero."""

    def __init__(self, args: list[str], returncode: int) -> None:
        self.command = args
        self.returncode = returncode
        super().__init__(f"{' '.join(args)} exited with status {returncode}")


class SubmissionError(InfrastructureError):
    """Raised when a job submission or status request fails.

    Attributes:
        status_code: HTTP status code for REST submissions, None for CLI submissions
        returncode: process exit code for CLI submissions, None for REST submissions
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        returncode: int | None = None,
    ) -> None:
        self.status_code = status_code
        self.returncode = returncode
        super().__init__(message)


class StorageError(InfrastructureError):
    """Raised when an object storage request gets a non-success response."""

    def __init__(self, operation: str, uri: str, status_code: int) -> None:
        self.operation = operation
        self.uri = uri
        self.status_code = status_code
        super().__init__(f"got status code {status_code} on {operation} of {uri}")


class JobFailedError(InfrastructureError):
    """Raised when a submitted job reaches a terminal state other than DONE."""

    def __init__(self, job_id: str, state: str, details: str | None = None) -> None:
        self.job_id = job_id
        self.state = state
        self.details = details
        message = f"job {job_id} finished in state {state}"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)


class JobTimeoutError(InfrastructureError):
    """Raised when polling exceeds the configured bound.

    The remote job is abandoned, not cancelled.
    """

    def __init__(self, job_id: str, state: str, timeout_seconds: float) -> None:
        self.job_id = job_id
        self.state = state
        self.timeout_seconds = timeout_seconds
        super().__init__(f"job {job_id} still {state} after {timeout_seconds}s")
