# src/streamjob/backends/hdfs.py
"""On-premise backend: the ``hadoop`` command line.

HadoopCli wraps ``$HADOOP_HOME/bin/hadoop`` for both the filesystem shell
(``hadoop fs -<command>``) and streaming job submission (``hadoop jar``).
Child output is passed through to this process so an operator sees the
engine's progress live; filesystem command output goes to stderr because
stdout may be a record stream.
"""

from __future__ import annotations

import functools
import os
import re
import subprocess
import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

from streamjob.backends.job import JobDescriptor
from streamjob.contracts.errors import FsCommandError, StreamingJarNotFoundError, SubmissionError

logger = structlog.get_logger(__name__)

STREAMING_JAR_PATTERN = re.compile(r"^hadoop.*streaming.*\.jar$")

_LS_TIME_FORMAT = "%Y-%m-%d %H:%M"


@functools.lru_cache(maxsize=None)
def find_streaming_jar(hadoop_home: str | None, override: str | None = None) -> str:
    """Locate the hadoop streaming jar.

    An explicit override wins. Otherwise hadoop_home is walked and the first
    file whose name matches ``hadoop*streaming*.jar`` is used. Successful
    lookups are cached for the life of the process.

    Raises:
        StreamingJarNotFoundError: If neither an override nor a match under hadoop_home exists
    """
    if override:
        return override
    if not hadoop_home:
        raise StreamingJarNotFoundError("HADOOP_HOME not set")
    for dirpath, dirnames, filenames in os.walk(hadoop_home):
        dirnames.sort()
        for filename in sorted(filenames):
            if STREAMING_JAR_PATTERN.match(filename):
                return os.path.join(dirpath, filename)
    raise StreamingJarNotFoundError(f"no streaming jar found under {hadoop_home}")


@dataclass(frozen=True, slots=True)
class HdfsFile:
    """One entry of ``hadoop fs -ls`` output.

    replica_count is None for directories, which hadoop lists with ``-``.
    """

    permissions: str
    replica_count: int | None
    user: str
    group: str
    size: int
    modified: datetime
    path: str

    @property
    def is_dir(self) -> bool:
        return self.permissions.startswith("d")


def parse_ls_line(line: str) -> HdfsFile:
    """Parse ``permissions replicas user group size date time path``.

    Raises:
        ValueError: If the line does not have that shape
    """
    fields = line.split()
    if len(fields) != 8:
        raise ValueError(f"expected 8 fields, got {len(fields)}")
    permissions, replicas, user, group, size, date, time, path = fields
    return HdfsFile(
        permissions=permissions,
        replica_count=None if replicas == "-" else int(replicas),
        user=user,
        group=group,
        size=int(size),
        modified=datetime.strptime(f"{date} {time}", _LS_TIME_FORMAT),
        path=path,
    )


def parse_ls_output(lines: Iterable[str]) -> Iterator[HdfsFile]:
    """Parse ``hadoop fs -ls`` output, skipping headers and unparseable lines."""
    for line in lines:
        line = line.rstrip("\n")
        if len(line) <= 1 or line.startswith("Found "):
            continue
        try:
            yield parse_ls_line(line)
        except ValueError as e:
            logger.warning("unparseable ls line", line=line, error=str(e))


class HadoopCli:
    """The ``hadoop`` binary under a hadoop installation.

    Without hadoop_home the ``hadoop`` found on PATH is used.
    """

    def __init__(self, hadoop_home: Path | None = None, streaming_jar: Path | None = None) -> None:
        self._hadoop_home = hadoop_home
        self._streaming_jar = streaming_jar

    @property
    def binary(self) -> str:
        if self._hadoop_home is None:
            return "hadoop"
        return str(self._hadoop_home / "bin" / "hadoop")

    def streaming_jar(self) -> str:
        return find_streaming_jar(
            str(self._hadoop_home) if self._hadoop_home else None,
            str(self._streaming_jar) if self._streaming_jar else None,
        )

    # === Filesystem shell ===

    def _fs_args(self, command: str, *args: str) -> list[str]:
        return [self.binary, "fs", command, *args]

    def fs_cmd(self, command: str, *args: str) -> None:
        """Run ``hadoop fs <command> <args>`` with its output on stderr.

        Raises:
            FsCommandError: On a non-zero exit
        """
        cmd = self._fs_args(command, *args)
        logger.info("hadoop fs", args=cmd[2:])
        try:
            result = subprocess.run(cmd, stdout=sys.stderr, stderr=sys.stderr, check=False)
        except OSError as e:
            raise FsCommandError(cmd, -1) from e
        if result.returncode != 0:
            raise FsCommandError(cmd, result.returncode)

    def mkdir(self, remote: str, *, parents: bool = True) -> None:
        if parents:
            self.fs_cmd("-mkdir", "-p", remote)
        else:
            self.fs_cmd("-mkdir", remote)

    def put(self, *args: str) -> None:
        self.fs_cmd("-put", *args)

    def remove(self, *args: str) -> None:
        self.fs_cmd("-rm", *args)

    def rmr(self, *args: str) -> None:
        """Recursive remove."""
        self.fs_cmd("-rm", "-r", *args)

    def copy(self, *args: str) -> None:
        self.fs_cmd("-cp", *args)

    def move(self, *args: str) -> None:
        self.fs_cmd("-mv", *args)

    def test(self, flag: str, remote: str) -> bool:
        """``hadoop fs -test``: ``-e`` exists, ``-z`` zero length, ``-d`` directory."""
        cmd = self._fs_args("-test", flag, remote)
        logger.debug("hadoop fs", args=cmd[2:])
        try:
            return subprocess.run(cmd, stdout=sys.stderr, stderr=sys.stderr, check=False).returncode == 0
        except OSError as e:
            raise FsCommandError(cmd, -1) from e

    def put_stream(self, *args: str) -> subprocess.Popen[bytes]:
        """Start ``hadoop fs -put - <args>``; write the content to the process stdin."""
        if not args or args[0] != "-":
            args = ("-", *args)
        cmd = self._fs_args("-put", *args)
        logger.info("hadoop fs", args=cmd[2:])
        return subprocess.Popen(cmd, stdin=subprocess.PIPE)

    def cat(self, *args: str) -> subprocess.Popen[bytes]:
        """Start ``hadoop fs -cat <args>``; read the content from the process stdout."""
        cmd = self._fs_args("-cat", *args)
        logger.info("hadoop fs", args=cmd[2:])
        return subprocess.Popen(cmd, stdout=subprocess.PIPE)

    def ls(self, *args: str) -> Iterator[HdfsFile]:
        """List files, skipping lines that do not parse.

        Raises:
            FsCommandError: If the listing command fails
        """
        cmd = self._fs_args("-ls", *args)
        logger.debug("hadoop fs", args=cmd[2:])
        with subprocess.Popen(cmd, stdout=subprocess.PIPE, text=True) as proc:
            assert proc.stdout is not None
            yield from parse_ls_output(proc.stdout)
        if proc.returncode != 0:
            raise FsCommandError(cmd, proc.returncode)

    # === Job submission ===

    def build_command(self, job: JobDescriptor) -> list[str]:
        """``hadoop jar <streaming jar> -D ... <jar args>``."""
        return [self.binary, "jar", self.streaming_jar(), *job.property_args(), *job.jar_args()]

    def submit(self, job: JobDescriptor) -> None:
        """Run the streaming job and wait for it.

        Raises:
            StreamingJarNotFoundError: If the streaming jar cannot be located
            SubmissionError: If hadoop cannot be started or exits non-zero
        """
        cmd = self.build_command(job)
        logger.info("submitting streaming job", job=job.name, args=cmd[1:])
        try:
            result = subprocess.run(cmd, check=False)
        except OSError as e:
            raise SubmissionError(f"failed starting {cmd[0]}: {e}") from e
        if result.returncode != 0:
            raise SubmissionError(
                f"streaming job {job.name} exited with status {result.returncode}",
                returncode=result.returncode,
            )
        logger.info("streaming job finished", job=job.name)
