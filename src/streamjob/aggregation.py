# src/streamjob/aggregation.py
"""Bounded counting cache for map-side pre-aggregation.

A mapper that emits ``(key, 1)`` for every occurrence can instead count
into an AggregationCache and emit ``(key, total)`` when an entry is
evicted or flushed. Less output means less to sort and shuffle.

Eviction order is INSERTION order. Incrementing a key that is already
cached adds to its total in place and does not promote it. This is not
a true LRU: a hot key inserted early is evicted (and later re-inserted)
even if it was just incremented. Correctness only depends on every key
eventually reaching the eviction callback, so either policy yields the
same reduced output.

Storage is a fixed-size arena: parallel lists sized to capacity, with
entries linked by integer slot index (NO_LINK terminates a chain) and a
dict mapping key to slot. Nothing is allocated per increment once the
arena is full.

Thread Safety:
    Not thread-safe. Use one cache per mapper thread and shard keys across
    caches if a mapper runs in parallel.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterator
from typing import Any

from streamjob.contracts.errors import ConfigurationError

NO_LINK = -1

EvictionCallback = Callable[[Any, int], None]


class AggregationCache:
    """Fixed-capacity key -> integer counter with an eviction callback.

    Example:
        with encode_records(sys.stdout.buffer) as out:
            cache = AggregationCache(lambda key, total: out.put(key, total), capacity=10_000)
            for record in decode_records(sys.stdin.buffer):
                cache.increment(record["user"], 1)
            cache.flush()
    """

    def __init__(self, on_evict: EvictionCallback, capacity: int) -> None:
        """Initialize an empty cache.

        Args:
            on_evict: Called with (key, total) for every entry leaving the cache
            capacity: Maximum number of keys held at once

        Raises:
            ConfigurationError: If capacity < 1
        """
        if capacity < 1:
            raise ConfigurationError(f"aggregation cache capacity must be >= 1, got {capacity}")
        self._on_evict = on_evict
        self._capacity = capacity
        self._reset()

    def _reset(self) -> None:
        capacity = self._capacity
        self._keys: list[Hashable | None] = [None] * capacity
        self._values: list[int] = [0] * capacity
        # _prev points at the next-older entry, _next at the next-newer one
        self._prev: list[int] = [NO_LINK] * capacity
        self._next: list[int] = [NO_LINK] * capacity
        self._index: dict[Hashable, int] = {}
        self._used = 0
        self._oldest = NO_LINK
        self._newest = NO_LINK

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: Hashable) -> int | None:
        """Current total for key, or None if it is not cached."""
        slot = self._index.get(key)
        if slot is None:
            return None
        return self._values[slot]

    def items(self) -> Iterator[tuple[Hashable, int]]:
        """Yield (key, total) oldest first. Eviction order, useful for debugging."""
        slot = self._oldest
        while slot != NO_LINK:
            yield self._keys[slot], self._values[slot]
            slot = self._next[slot]

    def increment(self, key: Hashable, delta: int = 1) -> None:
        """Add delta to key's total, inserting (and maybe evicting) if new."""
        slot = self._index.get(key)
        if slot is not None:
            self._values[slot] += delta
            return

        if self._used == self._capacity:
            slot = self._evict_oldest()
        else:
            slot = self._used
            self._used += 1
        self._push_newest(key, delta, slot)
        self._index[key] = slot

    def flush(self) -> None:
        """Evict every entry oldest first, leaving an empty cache of the same capacity."""
        while self._index:
            self._evict_oldest()
        self._reset()

    def _evict_oldest(self) -> int:
        """Hand the oldest entry to the callback, then unlink it and return its free slot.

        The callback runs first: if it raises, the entry stays cached and
        the cache is unchanged.

        Precondition: the cache is not empty.
        """
        slot = self._oldest
        key = self._keys[slot]
        self._on_evict(key, self._values[slot])

        newer = self._next[slot]
        if newer == NO_LINK:
            self._newest = NO_LINK
        else:
            self._prev[newer] = NO_LINK
        self._oldest = newer

        del self._index[key]
        self._keys[slot] = None
        return slot

    def _push_newest(self, key: Hashable, value: int, slot: int) -> None:
        """Store (key, value) in slot and link it as the newest entry."""
        self._keys[slot] = key
        self._values[slot] = value
        self._prev[slot] = self._newest
        self._next[slot] = NO_LINK

        if self._oldest == NO_LINK:
            self._oldest = slot
        else:
            self._next[self._newest] = slot
        self._newest = slot
