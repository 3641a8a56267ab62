# src/streamjob/protocol/readers.py
"""Line-oriented input decoders.

Each decoder starts a producer thread that reads the byte stream and hands
decoded items over a bounded Channel, and returns a generator for the
consumer. Line order is preserved end to end.

Malformed lines are data errors: they are counted on the reporter, logged
and dropped, and decoding continues with the next line. An I/O error
reading the stream ends decoding and is raised in the consumer as
StreamError.

Grouping (decode_grouped_input) assumes the input is sorted by key, which
the streaming engine guarantees for reducer input. A key that appears in
two separate runs yields two separate groups.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any, BinaryIO

import structlog

from streamjob.protocol.channel import _ABANDON_POLL_SECONDS, CHANNEL_DEPTH, Channel, start_producer
from streamjob.protocol.codecs import JSON, Codec, KeyValue, loads_json
from streamjob.reporter import Reporter, get_reporter

logger = structlog.get_logger(__name__)

COUNTER_GROUP = "streamjob.protocol"

# Longest line prefix included in a log message
_PREVIEW_BYTES = 200


def _preview(line: bytes) -> str:
    return line[:_PREVIEW_BYTES].decode("utf-8", errors="replace")


def _lines(stream: BinaryIO) -> Iterator[bytes]:
    """Yield non-empty lines without their newline terminator."""
    for line in stream:
        if line.endswith(b"\n"):
            line = line[:-1]
        if line:
            yield line


def _drain(channel: Channel[Any]) -> Iterator[Any]:
    """Consumer side generator that releases the producer if the consumer stops early."""
    try:
        yield from channel
    finally:
        channel.abandon()


class KeyGroup:
    """A key and the contiguous run of values that share it.

    ``values`` can be iterated once. A group is only valid until the next
    group is requested from decode_grouped_input(); values not consumed by
    then are discarded.
    """

    __slots__ = ("key", "raw_key", "_channel")

    def __init__(self, key: Any, raw_key: bytes, channel: Channel[Any]) -> None:
        self.key = key
        self.raw_key = raw_key
        self._channel = channel

    @property
    def values(self) -> Iterator[Any]:
        return iter(self._channel)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._channel)

    def discard(self) -> None:
        """Drop any values not yet consumed and release the producer."""
        self._channel.abandon()

    def __repr__(self) -> str:
        return f"KeyGroup(key={self.key!r})"


def decode_lines(stream: BinaryIO) -> Iterator[bytes]:
    """Raw input lines, newline removed, empty lines skipped."""
    channel: Channel[bytes] = Channel(name="decode_lines")

    def produce() -> None:
        try:
            for line in _lines(stream):
                if not channel.put(line):
                    return
        except Exception as e:
            channel.fail(e)
            return
        channel.close()

    start_producer(produce, "streamjob-decode-lines")
    return _drain(channel)


def decode_records(stream: BinaryIO, *, reporter: Reporter | None = None) -> Iterator[Any]:
    """One JSON document per line.

    Lines that are not valid JSON increment the ``invalid line`` counter
    and are skipped.
    """
    reporter = reporter or get_reporter()
    channel: Channel[Any] = Channel(name="decode_records")

    def produce() -> None:
        try:
            for line in _lines(stream):
                try:
                    record = loads_json(line)
                except ValueError as e:
                    reporter.counter(COUNTER_GROUP, "invalid line")
                    logger.warning("failed parsing line", error=str(e), line=_preview(line))
                    continue
                if not channel.put(record):
                    return
        except Exception as e:
            channel.fail(e)
            return
        channel.close()

    start_producer(produce, "streamjob-decode-records")
    return _drain(channel)


def decode_pairs(stream: BinaryIO, *, reporter: Reporter | None = None) -> Iterator[KeyValue]:
    """Raw (key, value) byte pairs split on the first tab, without collation."""
    reporter = reporter or get_reporter()
    channel: Channel[KeyValue] = Channel(name="decode_pairs")

    def produce() -> None:
        try:
            for line in _lines(stream):
                key, tab, value = line.partition(b"\t")
                if not tab:
                    reporter.counter(COUNTER_GROUP, "invalid line - no tab")
                    logger.warning("invalid line, no tab", line=_preview(line))
                    continue
                if not channel.put(KeyValue(key, value)):
                    return
        except Exception as e:
            channel.fail(e)
            return
        channel.close()

    start_producer(produce, "streamjob-decode-pairs")
    return _drain(channel)


def decode_grouped_input(
    stream: BinaryIO,
    codec: Codec = JSON,
    *,
    reporter: Reporter | None = None,
) -> Iterator[KeyGroup]:
    """Group sorted ``key<TAB>value`` lines into KeyGroups.

    A new group starts whenever the raw key segment differs from the key
    of the previous valid line, or no group is open. A line without a tab
    is dropped and forgets the previous key, so the next valid line always
    opens a new group. A key the codec cannot decode is dropped the same way.

    Each group's values are delivered through their own bounded channel:
    the producer blocks once CHANNEL_DEPTH values are waiting, until the
    consumer reads them or moves on to the next group.

    Groups are handed over on request. The producer does not publish a
    new group until the consumer asks for the next one, so it reads at
    most one line past the current group.

    Args:
        stream: Binary input, sorted by key
        codec: How to decode key and value segments (JSON, RAW_JSON or RAW)
        reporter: Counter destination (defaults to the process reporter)
    """
    reporter = reporter or get_reporter()
    groups: Channel[KeyGroup] = Channel(maxsize=1, name="decode_grouped_input")
    # Released once each time the consumer asks for the next group
    requests = threading.Semaphore(0)

    def wait_for_request() -> bool:
        while not requests.acquire(timeout=_ABANDON_POLL_SECONDS):
            if groups.abandoned:
                return False
        return True

    def produce() -> None:
        last_key: bytes | None = None
        current: Channel[Any] | None = None
        try:
            for line in _lines(stream):
                raw_key, tab, raw_value = line.partition(b"\t")
                if not tab:
                    reporter.counter(COUNTER_GROUP, "invalid line - no tab")
                    logger.warning("invalid line, no tab", line=_preview(line))
                    last_key = None
                    continue

                if current is None or raw_key != last_key:
                    if current is not None:
                        current.close()
                        current = None
                    try:
                        key = codec.decode_key(raw_key)
                    except ValueError as e:
                        reporter.counter(COUNTER_GROUP, "invalid key")
                        logger.warning("failed parsing key", error=str(e), line=_preview(line))
                        last_key = None
                        continue
                    last_key = raw_key
                    current = Channel(maxsize=CHANNEL_DEPTH, name=f"values of {_preview(raw_key)}")
                    if not wait_for_request() or not groups.put(KeyGroup(key, raw_key, current)):
                        return

                try:
                    value = codec.decode_value(raw_value)
                except ValueError as e:
                    reporter.counter(COUNTER_GROUP, "invalid line")
                    logger.warning("failed parsing value", error=str(e), line=_preview(line))
                    continue
                # False means the consumer moved past this group; keep reading
                current.put(value)
        except Exception as e:
            if current is not None:
                current.fail(e)
            groups.fail(e)
            return
        if current is not None:
            current.close()
        groups.close()

    start_producer(produce, "streamjob-decode-groups")
    return _iterate_groups(groups, requests)


def _iterate_groups(groups: Channel[KeyGroup], requests: threading.Semaphore) -> Iterator[KeyGroup]:
    # The previous group is discarded BEFORE waiting for the next one: the
    # producer may be blocked on that group's full value channel.
    pending = iter(groups)
    previous: KeyGroup | None = None
    try:
        while True:
            if previous is not None:
                previous.discard()
            requests.release()
            try:
                group = next(pending)
            except StopIteration:
                return
            previous = group
            yield group
    finally:
        if previous is not None:
            previous.discard()
        groups.abandon()
