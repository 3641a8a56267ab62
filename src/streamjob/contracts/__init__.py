"""Shared contracts: enums and exceptions used across subsystem boundaries.

This package is a LEAF MODULE with no outbound dependencies to core,
protocol, backends or runner.
"""

from streamjob.contracts.enums import Backend, JobState, RunMode, Stage
from streamjob.contracts.errors import (
    ConfigurationError,
    FsCommandError,
    InfrastructureError,
    JobFailedError,
    JobTimeoutError,
    StorageError,
    StreamError,
    StreamingJarNotFoundError,
    StreamJobError,
    SubmissionError,
)

__all__ = [
    "Backend",
    "ConfigurationError",
    "FsCommandError",
    "InfrastructureError",
    "JobFailedError",
    "JobState",
    "JobTimeoutError",
    "RunMode",
    "Stage",
    "StorageError",
    "StreamError",
    "StreamJobError",
    "StreamingJarNotFoundError",
    "SubmissionError",
]
