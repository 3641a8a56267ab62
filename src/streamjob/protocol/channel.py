# src/streamjob/protocol/channel.py
"""Bounded handoff channel between a producer thread and one consumer.

A Channel is a ``queue.Queue`` with an end-of-stream marker:

- the producer calls put() for every item and close() (or fail()) exactly
  once when it is done, so the consumer sees end-of-stream by iteration
  ending rather than by polling
- the consumer iterates; a failure recorded with fail() is raised in the
  consumer as StreamError
- a consumer that stops early calls abandon(); blocked and future put()
  calls then return False instead of waiting forever on a full queue

Closing a channel only says that no more items are coming. It says nothing
about what the consumer has done with them; writers expose their own
completion barrier for that (see RecordWriter.wait()).
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

from streamjob.contracts.errors import StreamError

T = TypeVar("T")

# Items buffered per channel before the producer blocks.
CHANNEL_DEPTH = 100

# How often a blocked producer re-checks for abandonment.
_ABANDON_POLL_SECONDS = 0.05


class _EndOfStream:
    """Sentinel put on the queue by close()."""


class _Failure:
    """Wraps a producer exception so it can travel through the queue."""

    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


_END = _EndOfStream()


class Channel(Generic[T]):
    """Bounded single-producer, single-consumer channel."""

    def __init__(self, maxsize: int = CHANNEL_DEPTH, name: str = "channel") -> None:
        self.name = name
        self._queue: queue.Queue[T | _EndOfStream | _Failure] = queue.Queue(maxsize=maxsize)
        self._abandoned = threading.Event()
        self._closed = False

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    def put(self, item: T) -> bool:
        """Hand one item to the consumer, blocking while the channel is full.

        Returns:
            True if the item was queued, False if the consumer abandoned the channel.
        """
        return self._offer(item)

    def close(self) -> None:
        """Signal end-of-stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._offer(_END)

    def fail(self, error: BaseException) -> None:
        """End the stream with an error the consumer will see as StreamError."""
        if self._closed:
            return
        self._closed = True
        self._offer(_Failure(error))

    def abandon(self) -> None:
        """Consumer side: stop receiving and release a blocked producer."""
        self._abandoned.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _offer(self, item: T | _EndOfStream | _Failure) -> bool:
        while not self._abandoned.is_set():
            try:
                self._queue.put(item, timeout=_ABANDON_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self._queue.get()
            if isinstance(item, _EndOfStream):
                return
            if isinstance(item, _Failure):
                raise StreamError(f"{self.name} failed: {item.error}") from item.error
            yield item


def start_producer(target: Callable[[], None], name: str) -> threading.Thread:
    """Start a daemon producer thread.

    Daemon so that a producer blocked reading a pipe never keeps the
    process alive after the consumer has finished.
    """
    thread = threading.Thread(target=target, name=name, daemon=True)
    thread.start()
    return thread
