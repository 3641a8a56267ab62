# src/streamjob/backends/job.py
"""JobDescriptor: everything needed to submit one step.

A JobDescriptor is built by the Runner for each step and handed to a
Submitter. Both submitters derive the streaming jar arguments from it the
same way; they differ only in how properties are passed (``-D`` pairs on
the hadoop command line, a properties map in the Dataproc request).
"""

from typing import Protocol

from pydantic import BaseModel, Field

DEFAULT_PROTO = "hdfs:///"
DEFAULT_REDUCER_TASKS = 30

JOB_NAME_PROPERTY = "mapred.job.name"
REDUCE_TASKS_PROPERTY = "mapred.reduce.tasks"

COMPRESSION_PROPERTIES: dict[str, str] = {
    "mapred.output.compress": "true",
    "mapred.output.compression.codec": "org.apache.hadoop.io.compress.GzipCodec",
}


def absolute_path(path: str, proto: str = DEFAULT_PROTO) -> str:
    """Qualify path with a filesystem scheme.

    Paths that already carry a scheme (``://``) are returned unchanged.
    Otherwise leading slashes are dropped and the path is joined onto
    ``proto`` (``hdfs:///`` when empty).

    >>> absolute_path("/a", "hdfs:///")
    'hdfs:///a'
    >>> absolute_path("hdfs:///a", "gs://bucket/")
    'hdfs:///a'
    """
    if "://" in path:
        return path
    return (proto or DEFAULT_PROTO) + path.lstrip("/")


class JobDescriptor(BaseModel):
    """One streaming job: one step of a run."""

    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    inputs: tuple[str, ...] = Field(min_length=1)
    output: str = Field(min_length=1)
    mapper: str = Field(min_length=1, description="Map stage command line")
    reducer: str = Field(min_length=1, description="Reduce stage command line")
    combiner: str | None = Field(default=None, description="Combine stage command line, if the step has one")
    reducer_tasks: int = Field(default=DEFAULT_REDUCER_TASKS, ge=0)
    options: tuple[str, ...] = Field(default=(), description="Extra streaming jar arguments")
    files: tuple[str, ...] = Field(default=(), description="Local files shipped with -file")
    cache_files: tuple[str, ...] = Field(default=(), description="Distributed files shipped with -files")
    properties: dict[str, str] = Field(default_factory=dict)
    default_proto: str = DEFAULT_PROTO

    def job_properties(self) -> dict[str, str]:
        """Explicit properties over the job name and reducer task defaults."""
        defaults = {
            JOB_NAME_PROPERTY: self.name,
            REDUCE_TASKS_PROPERTY: str(self.reducer_tasks),
        }
        return {**defaults, **self.properties}

    def property_args(self) -> list[str]:
        """Properties as generic ``-D key=value`` arguments."""
        args: list[str] = []
        for key, value in self.job_properties().items():
            args.extend(["-D", f"{key}={value}"])
        return args

    def jar_args(self) -> list[str]:
        """Streaming jar arguments, without properties.

        ``-files`` is a generic option and comes before the streaming
        options.
        """
        args: list[str] = []
        if self.cache_files:
            args.extend(["-files", ",".join(absolute_path(f, self.default_proto) for f in self.cache_files)])
        args.extend(self.options)
        for path in self.inputs:
            args.extend(["-input", absolute_path(path, self.default_proto)])
        for path in self.files:
            args.extend(["-file", path])
        args.extend(["-output", absolute_path(self.output, self.default_proto)])
        args.extend(["-mapper", self.mapper])
        if self.combiner:
            args.extend(["-combiner", self.combiner])
        args.extend(["-reducer", self.reducer])
        return args


class Submitter(Protocol):
    """Runs one job to completion or raises InfrastructureError."""

    def submit(self, job: JobDescriptor) -> None: ...
