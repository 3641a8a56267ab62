# tests/property/test_aggregation_properties.py
"""Property tests: the aggregation cache never loses or invents counts."""

from collections import Counter
from typing import Any

from hypothesis import given
from hypothesis import strategies as st

from streamjob.aggregation import AggregationCache

keys = st.sampled_from(["a", "b", "c", "d", "e", "f", "g"])
increments = st.lists(st.tuples(keys, st.integers(min_value=-5, max_value=50)), max_size=200)


@given(increments=increments, capacity=st.integers(min_value=1, max_value=8))
def test_evicted_totals_sum_to_increments(increments: list[tuple[str, int]], capacity: int) -> None:
    evicted: Counter[Any] = Counter()

    def on_evict(key: Any, total: int) -> None:
        evicted[key] += total

    cache = AggregationCache(on_evict, capacity=capacity)
    for key, delta in increments:
        cache.increment(key, delta)
        assert len(cache) <= capacity
    cache.flush()

    expected: Counter[Any] = Counter()
    for key, delta in increments:
        expected[key] += delta
    assert evicted == expected
    assert len(cache) == 0


@given(increments=increments)
def test_unbounded_cache_evicts_each_key_once_in_insertion_order(increments: list[tuple[str, int]]) -> None:
    evicted: list[Any] = []
    cache = AggregationCache(lambda key, total: evicted.append(key), capacity=100)

    for key, delta in increments:
        cache.increment(key, delta)
    cache.flush()

    assert evicted == list(dict.fromkeys(key for key, _ in increments))
