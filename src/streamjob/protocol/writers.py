# src/streamjob/protocol/writers.py
"""Output encoder for ``key<TAB>value`` records.

RecordWriter owns a writer thread. put() hands a record over a bounded
Channel; the thread encodes it with the chosen codec and writes it to the
stream. close() ends the input, wait() blocks until every record has been
written and the stream flushed.

A record that cannot be encoded is a data error: it is counted, logged and
dropped. A failure writing the stream is a stream error: it stops the
writer, and the next put() or wait() raises StreamError.
"""

from __future__ import annotations

import threading
from types import TracebackType
from typing import Any, BinaryIO

import structlog

from streamjob.contracts.errors import StreamError
from streamjob.protocol.channel import CHANNEL_DEPTH, Channel, start_producer
from streamjob.protocol.codecs import JSON, Codec, KeyValue
from streamjob.reporter import Reporter, get_reporter

logger = structlog.get_logger(__name__)

COUNTER_GROUP = "streamjob.protocol"


class RecordWriter:
    """Writes (key, value) records to a binary stream on a background thread.

    Example:
        with RecordWriter(sys.stdout.buffer) as out:
            for group in decode_grouped_input(sys.stdin.buffer):
                out.put(group.key, sum(group.values))

    Leaving the ``with`` block closes the writer and waits for it to finish.
    """

    def __init__(
        self,
        stream: BinaryIO,
        codec: Codec = JSON,
        *,
        reporter: Reporter | None = None,
        depth: int = CHANNEL_DEPTH,
    ) -> None:
        self._stream = stream
        self._codec = codec
        self._reporter = reporter or get_reporter()
        self._channel: Channel[KeyValue] = Channel(maxsize=depth, name=f"{codec.name} writer")
        self._done = threading.Event()
        self._error: BaseException | None = None
        self._thread = start_producer(self._run, "streamjob-writer")

    @property
    def codec(self) -> Codec:
        return self._codec

    def put(self, key: Any, value: Any) -> None:
        """Queue one record for writing.

        Raises:
            StreamError: If the writer thread has stopped on a write failure
        """
        if not self._channel.put(KeyValue(key, value)):
            self._raise_if_failed()
            raise StreamError("record writer is no longer accepting records")

    def close(self) -> None:
        """No more records. Does not wait for them to be written."""
        self._channel.close()

    def wait(self, timeout: float | None = None) -> None:
        """Block until every queued record is written and the stream flushed.

        Raises:
            StreamError: If writing failed
            TimeoutError: If timeout elapsed first
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"record writer did not finish within {timeout}s")
        self._raise_if_failed()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise StreamError(f"writing records failed: {self._error}") from self._error

    def _encode(self, record: KeyValue) -> bytes | None:
        try:
            key = self._codec.encode_key(record.key)
            value = self._codec.encode_value(record.value)
        except (TypeError, ValueError) as e:
            self._reporter.counter(COUNTER_GROUP, "unable to encode record")
            logger.warning("failed encoding record", error=str(e), key=repr(record.key)[:200])
            return None
        return b"".join((key, b"\t", value, b"\n"))

    def _run(self) -> None:
        try:
            for record in self._channel:
                line = self._encode(record)
                if line is not None:
                    self._stream.write(line)
            self._stream.flush()
        except Exception as e:
            self._error = e
            self._channel.abandon()
            logger.error("record writer failed", error=str(e))
        finally:
            self._done.set()

    def __enter__(self) -> RecordWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
        self._done.wait()
        # An exception from the with-body takes precedence over a writer failure
        if exc_type is None:
            self._raise_if_failed()


def encode_records(
    stream: BinaryIO,
    codec: Codec = JSON,
    *,
    reporter: Reporter | None = None,
) -> RecordWriter:
    """Start a RecordWriter on stream. Use as a context manager."""
    return RecordWriter(stream, codec, reporter=reporter)
