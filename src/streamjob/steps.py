# src/streamjob/steps.py
"""Reusable stage implementations."""

import shutil
from typing import BinaryIO

import structlog

from streamjob.protocol.codecs import RAW_JSON
from streamjob.protocol.readers import decode_grouped_input
from streamjob.protocol.writers import RecordWriter
from streamjob.reporter import Reporter, get_reporter

logger = structlog.get_logger(__name__)

COUNTER_GROUP = "streamjob.steps"


def identity_copy(stdin: BinaryIO, stdout: BinaryIO) -> None:
    """Copy input to output unchanged. The map stage of a step without a mapper."""
    shutil.copyfileobj(stdin, stdout)
    stdout.flush()


class SummingReducer:
    """Sum integer values per key.

    Keys pass through as raw bytes, so they are written back exactly as the
    mapper emitted them. Values that are not JSON integers are counted as
    ``non-integer value`` and ignored.

    Summation is associative, so the same method serves as the combiner.
    Subclass and add a ``mapper`` to get a complete counting step.
    """

    def __init__(self, reporter: Reporter | None = None) -> None:
        self._reporter = reporter

    @property
    def reporter(self) -> Reporter:
        return self._reporter or get_reporter()

    def reducer(self, stdin: BinaryIO, stdout: BinaryIO) -> None:
        reporter = self.reporter
        with RecordWriter(stdout, RAW_JSON, reporter=reporter) as out:
            for group in decode_grouped_input(stdin, RAW_JSON, reporter=reporter):
                total = 0
                for value in group.values:
                    # bool is an int subclass; JSON true/false are not counts
                    if isinstance(value, int) and not isinstance(value, bool):
                        total += value
                    else:
                        reporter.counter(COUNTER_GROUP, "non-integer value")
                        logger.warning("ignoring non-integer value", key=group.raw_key.decode("utf-8", "replace"))
                out.put(group.key, total)

    def combiner(self, stdin: BinaryIO, stdout: BinaryIO) -> None:
        self.reducer(stdin, stdout)
