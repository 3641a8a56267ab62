"""Core infrastructure: configuration and logging."""

from streamjob.core.config import CloudSettings, RunnerSettings, load_settings
from streamjob.core.logging import configure_logging, get_logger

__all__ = [
    "CloudSettings",
    "RunnerSettings",
    "configure_logging",
    "get_logger",
    "load_settings",
]
