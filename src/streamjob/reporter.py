# src/streamjob/reporter.py
"""Counter and status side-channel for streaming tasks.

Hadoop streaming reads these lines from a task's stderr:

    reporter:counter:<group>,<counter>,<amount>
    reporter:status:<message>

The Reporter also keeps an in-process tally so tests and callers can read
back what was reported without parsing stderr.

Thread Safety:
    Decoder and encoder threads report concurrently. Writes and tally
    updates happen under one lock so lines never interleave.
"""

from __future__ import annotations

import resource
import sys
import threading
from collections import Counter
from typing import TextIO

import structlog

logger = structlog.get_logger(__name__)


class Reporter:
    """Writes counter/status lines and tallies counters per (group, counter)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        """Initialize reporter.

        Args:
            stream: Destination for reporter lines. None means the current
                sys.stderr at write time.
        """
        self._stream = stream
        self._lock = threading.Lock()
        self._counts: Counter[tuple[str, str]] = Counter()
        self._statuses: list[str] = []

    def _write(self, line: str) -> None:
        stream = self._stream if self._stream is not None else sys.stderr
        stream.write(line)
        stream.flush()

    def counter(self, group: str, counter: str, amount: int = 1) -> None:
        """Increment a job counter by ``amount``."""
        with self._lock:
            self._counts[(group, counter)] += amount
            self._write(f"reporter:counter:{group},{counter},{amount}\n")

    def status(self, message: str) -> None:
        """Set the task status message."""
        with self._lock:
            self._statuses.append(message)
            self._write(f"reporter:status:{message}\n")

    def count(self, group: str, counter: str) -> int:
        """Total reported so far for one counter."""
        with self._lock:
            return self._counts[(group, counter)]

    @property
    def counts(self) -> dict[tuple[str, str], int]:
        with self._lock:
            return dict(self._counts)

    @property
    def statuses(self) -> list[str]:
        with self._lock:
            return list(self._statuses)

    def audit_cpu_time(self, group: str, prefix: str) -> None:
        """Report user and system CPU time of this process in milliseconds."""
        try:
            usage = resource.getrusage(resource.RUSAGE_SELF)
        except OSError as e:
            logger.warning("error getting rusage", error=str(e))
            return
        self.counter(group, f"{prefix} userTime (ms)", int(usage.ru_utime * 1000))
        self.counter(group, f"{prefix} systemTime (ms)", int(usage.ru_stime * 1000))


_default_reporter = Reporter()


def get_reporter() -> Reporter:
    """Process-wide reporter writing to stderr."""
    return _default_reporter


def counter(group: str, counter: str, amount: int = 1) -> None:
    _default_reporter.counter(group, counter, amount)


def status(message: str) -> None:
    _default_reporter.status(message)
