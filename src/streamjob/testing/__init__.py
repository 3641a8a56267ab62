# src/streamjob/testing/__init__.py
"""Local pipeline harness for testing steps without a cluster.

Wires a step's stages together the way the streaming engine does:

    input -> mapper -> sort -> [combiner -> sort ->] reducer -> output

Each stage runs on its own thread and stages are connected by OS pipes, so
a step sees the same kind of blocking byte streams it gets in production.
The sort phase orders whole lines byte-wise, which reproduces the sorted
reducer input the engine guarantees.

Usage:
    from streamjob.testing import assert_step_output

    def test_word_count():
        assert_step_output(WordCount(), b"a b a\\n", b'"a"\\t2\\n"b"\\t1')
"""

from __future__ import annotations

import io
import os
import threading
from collections.abc import Sequence
from typing import Any, BinaryIO

from streamjob.contracts.enums import Stage
from streamjob.step import StageFunction, StepCapabilities

__all__ = [
    "assert_step_output",
    "assert_steps_output",
    "run_step",
    "run_steps",
    "sort_phase",
]


def sort_phase(stdin: BinaryIO, stdout: BinaryIO) -> None:
    """Buffer every line, sort byte-wise, write back newline-terminated."""
    lines = [line if line.endswith(b"\n") else line + b"\n" for line in stdin if line]
    lines.sort()
    stdout.writelines(lines)
    stdout.flush()


def _as_stream(data: bytes | BinaryIO) -> BinaryIO:
    if isinstance(data, bytes | bytearray):
        return io.BytesIO(bytes(data))
    return data


class _StageFailure:
    """Collects exceptions raised on stage threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.errors: list[tuple[str, BaseException]] = []

    def record(self, name: str, error: BaseException) -> None:
        with self._lock:
            self.errors.append((name, error))


def _start_stage(
    name: str,
    func: StageFunction,
    stdin: BinaryIO,
    stdout: BinaryIO,
    owned: Sequence[BinaryIO],
    failures: _StageFailure,
) -> threading.Thread:
    # Closing owned pipe ends on exit is what lets the next stage see EOF
    # (or the previous stage see a broken pipe if this one failed early).
    def run() -> None:
        try:
            func(stdin, stdout)
        except Exception as e:
            failures.record(name, e)
        finally:
            for stream in owned:
                try:
                    stream.close()
                except OSError as e:
                    failures.record(name, e)

    thread = threading.Thread(target=run, name=f"harness-{name}", daemon=True)
    thread.start()
    return thread


def run_step(step: Any, data: bytes | BinaryIO, *, combine: bool = False) -> bytes:
    """Run one step over data and return the reducer output.

    Args:
        step: Object with a reducer and optionally mapper/combiner
        data: Raw input bytes or a binary stream
        combine: Also run the combiner (plus a second sort) between map and reduce

    Raises:
        AssertionError: If any stage raised, naming the stage
        ConfigurationError: If the step has no reducer, or combine=True and it has no combiner
    """
    capabilities = StepCapabilities.of(step)

    stages: list[tuple[str, StageFunction]] = []
    if capabilities.mapper is not None:
        stages.append(("mapper", capabilities.mapper))
    stages.append(("sort", sort_phase))
    if combine:
        stages.append(("combiner", capabilities.for_stage(Stage.COMBINER)))
        stages.append(("sort after combiner", sort_phase))
    stages.append(("reducer", capabilities.reducer))

    failures = _StageFailure()
    result = io.BytesIO()
    threads = []
    stdin = _as_stream(data)
    for index, (name, func) in enumerate(stages):
        owned: list[BinaryIO] = [] if index == 0 else [stdin]
        if index == len(stages) - 1:
            stdout: BinaryIO = result
        else:
            read_fd, write_fd = os.pipe()
            stdout = os.fdopen(write_fd, "wb")
            owned.append(stdout)
            next_stdin: BinaryIO = os.fdopen(read_fd, "rb")
        threads.append(_start_stage(name, func, stdin, stdout, owned, failures))
        if index < len(stages) - 1:
            stdin = next_stdin

    for thread in threads:
        thread.join()

    if failures.errors:
        name, error = failures.errors[0]
        raise AssertionError(f"{name} failed with {error!r}") from error
    return result.getvalue()


def run_steps(steps: Sequence[Any], data: bytes | BinaryIO, *, combine: bool = False) -> bytes:
    """Chain steps: each step's reducer output is the next step's input."""
    output = data
    for step in steps:
        output = run_step(step, output, combine=combine)
    return output if isinstance(output, bytes) else _as_stream(output).read()


def _compare(result: bytes, expected: bytes | BinaryIO) -> bytes:
    if not isinstance(expected, bytes | bytearray):
        expected = expected.read()
    got = result.strip()
    want = bytes(expected).strip()
    if got != want:
        raise AssertionError(
            "output does not match expected output\n"
            f"got output:\n{got.decode('utf-8', 'replace')}\n"
            f"expected output:\n{want.decode('utf-8', 'replace')}"
        )
    return got


def assert_step_output(
    step: Any,
    data: bytes | BinaryIO,
    expected: bytes | BinaryIO,
    *,
    combine: bool = False,
) -> bytes:
    """Run one step and compare its output with expected, ignoring surrounding whitespace.

    Returns:
        The trimmed output

    Raises:
        AssertionError: With both outputs on mismatch
    """
    return _compare(run_step(step, data, combine=combine), expected)


def assert_steps_output(
    steps: Sequence[Any],
    data: bytes | BinaryIO,
    expected: bytes | BinaryIO,
    *,
    combine: bool = False,
) -> bytes:
    """Multi-step variant of assert_step_output()."""
    return _compare(run_steps(steps, data, combine=combine), expected)
