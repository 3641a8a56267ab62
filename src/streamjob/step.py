# src/streamjob/step.py
"""Step capability protocols.

A Step is any object with a ``reducer`` method. The other capabilities are
optional and detected structurally, once, when a step is dispatched:

- Mapper: ``mapper(stdin, stdout)``. Without it the map stage copies input
  to output unchanged.
- Combiner: ``combiner(stdin, stdout)``. Submitted as ``-combiner`` only
  when present; requesting the combiner stage of a step without one is a
  configuration error.
- ReducerTaskCount: ``reducer_tasks()`` overrides the runner's reducer task
  count for this step.

Every stage method reads raw bytes from ``stdin`` and writes raw bytes to
``stdout``. Use the decoders and RecordWriter in streamjob.protocol to work
with records instead of lines.

Example:
    class WordCount:
        def mapper(self, stdin, stdout):
            with RecordWriter(stdout) as out:
                for line in decode_lines(stdin):
                    for word in line.split():
                        out.put(word.decode(), 1)

        def reducer(self, stdin, stdout):
            with RecordWriter(stdout, RAW_JSON) as out:
                for group in decode_grouped_input(stdin, RAW_JSON):
                    out.put(group.key, sum(group.values))
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, BinaryIO, Protocol, runtime_checkable

from streamjob.contracts.enums import Stage
from streamjob.contracts.errors import ConfigurationError
from streamjob.steps import identity_copy

StageFunction = Callable[[BinaryIO, BinaryIO], None]


@runtime_checkable
class Mapper(Protocol):
    def mapper(self, stdin: BinaryIO, stdout: BinaryIO) -> None: ...


@runtime_checkable
class Reducer(Protocol):
    def reducer(self, stdin: BinaryIO, stdout: BinaryIO) -> None: ...


@runtime_checkable
class Combiner(Protocol):
    def combiner(self, stdin: BinaryIO, stdout: BinaryIO) -> None: ...


@runtime_checkable
class ReducerTaskCount(Protocol):
    def reducer_tasks(self) -> int: ...


# Every step must at least reduce.
Step = Reducer


@dataclass(frozen=True)
class StepCapabilities:
    """What one step can do, resolved once from the step object."""

    reducer: StageFunction
    mapper: StageFunction | None = None
    combiner: StageFunction | None = None
    reducer_tasks: int | None = None

    @classmethod
    def of(cls, step: Any) -> "StepCapabilities":
        """Resolve the capabilities of a step.

        Raises:
            ConfigurationError: If the step has no reducer, or reducer_tasks() is not positive
        """
        if not isinstance(step, Reducer):
            raise ConfigurationError(f"{type(step).__name__} is not a step: it has no reducer(stdin, stdout) method")

        reducer_tasks = None
        if isinstance(step, ReducerTaskCount):
            reducer_tasks = step.reducer_tasks()
            if reducer_tasks < 0:
                raise ConfigurationError(f"{type(step).__name__}.reducer_tasks() must be >= 0, got {reducer_tasks}")

        return cls(
            reducer=step.reducer,
            mapper=step.mapper if isinstance(step, Mapper) else None,
            combiner=step.combiner if isinstance(step, Combiner) else None,
            reducer_tasks=reducer_tasks,
        )

    @property
    def has_mapper(self) -> bool:
        return self.mapper is not None

    @property
    def has_combiner(self) -> bool:
        return self.combiner is not None

    def for_stage(self, stage: Stage) -> StageFunction:
        """The function that runs ``stage`` for this step.

        A missing mapper becomes an identity copy.

        Raises:
            ConfigurationError: If the combiner stage is requested and the step has none
        """
        if stage == Stage.MAPPER:
            return self.mapper if self.mapper is not None else identity_copy
        if stage == Stage.COMBINER:
            if self.combiner is None:
                raise ConfigurationError("step does not support the combiner stage")
            return self.combiner
        return self.reducer
