# examples/json_field_counter.py
"""Count JSON field names, and the values of one field, in newline-delimited JSON.

Submit to a hadoop cluster:

    JSON_COUNTER_INPUT=/logs/2024-01-*.json.gz python examples/json_field_counter.py --submit-job

or to Dataproc by adding --service-account, --project, --region, --cluster
and --bucket (or the matching GS_* environment variables).
"""

import os
import sys
from typing import BinaryIO

from streamjob.aggregation import AggregationCache
from streamjob.cli import main
from streamjob.protocol import RecordWriter, decode_records
from streamjob.reporter import Reporter
from streamjob.runner import Runner
from streamjob.steps import SummingReducer

COUNTER_GROUP = "json_field_counter"


class FieldNameCounter(SummingReducer):
    """How many lines carry each field name, plus a ``lines_read`` total."""

    def __init__(self, cache_size: int = 10_000, reporter: Reporter | None = None) -> None:
        super().__init__(reporter)
        self.cache_size = cache_size

    def mapper(self, stdin: BinaryIO, stdout: BinaryIO) -> None:
        with RecordWriter(stdout, reporter=self.reporter) as out:
            cache = AggregationCache(out.put, capacity=self.cache_size)
            for record in decode_records(stdin, reporter=self.reporter):
                cache.increment("lines_read")
                if not isinstance(record, dict):
                    self.reporter.counter(COUNTER_GROUP, "not an object")
                    continue
                for field in record:
                    cache.increment(field)
            cache.flush()


class JsonEntryCounter(SummingReducer):
    """How many times each value of one field occurs."""

    def __init__(self, field: str, reporter: Reporter | None = None) -> None:
        super().__init__(reporter)
        self.field = field

    def mapper(self, stdin: BinaryIO, stdout: BinaryIO) -> None:
        with RecordWriter(stdout, reporter=self.reporter) as out:
            for record in decode_records(stdin, reporter=self.reporter):
                self.reporter.counter(COUNTER_GROUP, "lines read")
                if not isinstance(record, dict) or self.field not in record:
                    self.reporter.counter(COUNTER_GROUP, "missing key")
                    continue
                out.put(record[self.field], 1)


runner = Runner(
    "json-field-counter",
    [FieldNameCounter()],
    inputs=[os.environ.get("JSON_COUNTER_INPUT", "/logs/*.json")],
    reducer_tasks=3,
)

if __name__ == "__main__":
    main(runner, sys.argv[1:])
