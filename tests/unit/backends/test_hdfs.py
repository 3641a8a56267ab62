# tests/unit/backends/test_hdfs.py
"""Tests for the hadoop command line backend."""

import io
import subprocess
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from streamjob.backends.hdfs import (
    HadoopCli,
    find_streaming_jar,
    parse_ls_line,
    parse_ls_output,
)
from streamjob.backends.job import JobDescriptor
from streamjob.contracts.errors import FsCommandError, StreamingJarNotFoundError, SubmissionError

LS_LINE = (
    "-rw-r--r--   3 jehiah supergroup 176572 2013-09-06 14:19 "
    "hdfs:///user/jehiah/tmp/mrjob/a.jehiah.20130906.141932.492122/step-output/1/part-00008"
)


@pytest.fixture(autouse=True)
def _clear_jar_cache() -> Iterator[None]:
    find_streaming_jar.cache_clear()
    yield
    find_streaming_jar.cache_clear()


def completed(returncode: int = 0) -> subprocess.CompletedProcess[bytes]:
    return subprocess.CompletedProcess(args=[], returncode=returncode)


def make_job() -> JobDescriptor:
    return JobDescriptor(
        name="wc",
        inputs=("/in",),
        output="/out",
        mapper="m",
        reducer="r",
        reducer_tasks=3,
    )


class TestFindStreamingJar:
    def test_override_wins(self, tmp_path: Path) -> None:
        assert find_streaming_jar(str(tmp_path), "/opt/custom.jar") == "/opt/custom.jar"

    def test_walks_hadoop_home(self, tmp_path: Path) -> None:
        jar_dir = tmp_path / "share" / "hadoop" / "tools" / "lib"
        jar_dir.mkdir(parents=True)
        (jar_dir / "hadoop-common-2.7.jar").touch()
        (jar_dir / "hadoop-streaming-2.7.3.jar").touch()

        assert find_streaming_jar(str(tmp_path)) == str(jar_dir / "hadoop-streaming-2.7.3.jar")

    def test_missing_jar(self, tmp_path: Path) -> None:
        with pytest.raises(StreamingJarNotFoundError, match="no streaming jar found"):
            find_streaming_jar(str(tmp_path))

    def test_no_hadoop_home(self) -> None:
        with pytest.raises(StreamingJarNotFoundError, match="HADOOP_HOME not set"):
            find_streaming_jar(None)


class TestParseLs:
    def test_parses_file_line(self) -> None:
        entry = parse_ls_line(LS_LINE)

        assert entry.permissions == "-rw-r--r--"
        assert entry.replica_count == 3
        assert entry.user == "jehiah"
        assert entry.group == "supergroup"
        assert entry.size == 176572
        assert entry.modified == datetime(2013, 9, 6, 14, 19)
        assert entry.path.endswith("/step-output/1/part-00008")
        assert not entry.is_dir

    def test_directory_has_no_replica_count(self) -> None:
        entry = parse_ls_line("drwxr-xr-x   - jehiah supergroup 0 2013-09-06 14:19 /user/jehiah")

        assert entry.is_dir
        assert entry.replica_count is None

    def test_bad_line_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_ls_line("not an ls line")

    def test_output_skips_header_and_junk(self) -> None:
        lines = ["Found 2 items\n", "\n", LS_LINE + "\n", "garbage here\n"]

        entries = list(parse_ls_output(lines))

        assert [e.size for e in entries] == [176572]


class TestHadoopCli:
    def test_binary(self) -> None:
        assert HadoopCli().binary == "hadoop"
        assert HadoopCli(Path("/opt/hadoop")).binary == "/opt/hadoop/bin/hadoop"

    @pytest.mark.parametrize(
        ("call", "expected"),
        [
            (lambda cli: cli.mkdir("/a"), ["-mkdir", "-p", "/a"]),
            (lambda cli: cli.mkdir("/a", parents=False), ["-mkdir", "/a"]),
            (lambda cli: cli.put("local", "/remote"), ["-put", "local", "/remote"]),
            (lambda cli: cli.remove("/a"), ["-rm", "/a"]),
            (lambda cli: cli.rmr("/a"), ["-rm", "-r", "/a"]),
            (lambda cli: cli.copy("/a", "/b"), ["-cp", "/a", "/b"]),
            (lambda cli: cli.move("/a", "/b"), ["-mv", "/a", "/b"]),
        ],
    )
    def test_fs_commands(self, call: object, expected: list[str]) -> None:
        with patch("streamjob.backends.hdfs.subprocess.run", return_value=completed()) as run:
            call(HadoopCli())  # type: ignore[operator]

        assert run.call_args.args[0] == ["hadoop", "fs", *expected]

    def test_fs_command_failure(self) -> None:
        with patch("streamjob.backends.hdfs.subprocess.run", return_value=completed(1)):
            with pytest.raises(FsCommandError) as excinfo:
                HadoopCli().rmr("/a")

        assert excinfo.value.returncode == 1
        assert excinfo.value.command == ["hadoop", "fs", "-rm", "-r", "/a"]

    def test_missing_binary_is_an_fs_error(self) -> None:
        with patch("streamjob.backends.hdfs.subprocess.run", side_effect=FileNotFoundError("hadoop")):
            with pytest.raises(FsCommandError):
                HadoopCli().mkdir("/a")

    def test_test_returns_bool(self) -> None:
        with patch("streamjob.backends.hdfs.subprocess.run", side_effect=[completed(0), completed(1)]) as run:
            cli = HadoopCli()
            assert cli.test("-e", "/a") is True
            assert cli.test("-e", "/b") is False

        assert run.call_args.args[0] == ["hadoop", "fs", "-test", "-e", "/b"]

    def test_cat_and_put_stream_start_processes(self) -> None:
        with patch("streamjob.backends.hdfs.subprocess.Popen") as popen:
            cli = HadoopCli()
            cli.cat("/out/part-*")
            cli.put_stream("/remote")

        first, second = popen.call_args_list
        assert first.args[0] == ["hadoop", "fs", "-cat", "/out/part-*"]
        assert first.kwargs["stdout"] == subprocess.PIPE
        assert second.args[0] == ["hadoop", "fs", "-put", "-", "/remote"]
        assert second.kwargs["stdin"] == subprocess.PIPE

    def test_ls(self) -> None:
        proc = MagicMock()
        proc.__enter__.return_value = proc
        proc.stdout = io.StringIO(f"Found 1 items\n{LS_LINE}\n")
        proc.returncode = 0

        with patch("streamjob.backends.hdfs.subprocess.Popen", return_value=proc):
            entries = list(HadoopCli().ls("/user/jehiah"))

        assert len(entries) == 1
        assert entries[0].replica_count == 3

    def test_ls_failure(self) -> None:
        proc = MagicMock()
        proc.__enter__.return_value = proc
        proc.stdout = io.StringIO("")
        proc.returncode = 1

        with patch("streamjob.backends.hdfs.subprocess.Popen", return_value=proc):
            with pytest.raises(FsCommandError):
                list(HadoopCli().ls("/missing"))


class TestSubmit:
    def test_build_command(self) -> None:
        cli = HadoopCli(Path("/opt/hadoop"), streaming_jar=Path("/opt/streaming.jar"))

        cmd = cli.build_command(make_job())

        assert cmd[:3] == ["/opt/hadoop/bin/hadoop", "jar", "/opt/streaming.jar"]
        assert cmd[3:7] == ["-D", "mapred.job.name=wc", "-D", "mapred.reduce.tasks=3"]
        assert cmd[7:] == make_job().jar_args()

    def test_submit_success(self) -> None:
        cli = HadoopCli(streaming_jar=Path("/opt/streaming.jar"))

        with patch("streamjob.backends.hdfs.subprocess.run", return_value=completed()) as run:
            cli.submit(make_job())

        assert run.call_args.args[0][:3] == ["hadoop", "jar", "/opt/streaming.jar"]

    def test_submit_failure(self) -> None:
        cli = HadoopCli(streaming_jar=Path("/opt/streaming.jar"))

        with patch("streamjob.backends.hdfs.subprocess.run", return_value=completed(2)):
            with pytest.raises(SubmissionError, match="exited with status 2") as excinfo:
                cli.submit(make_job())

        assert excinfo.value.returncode == 2

    def test_submit_without_jar(self) -> None:
        with pytest.raises(StreamingJarNotFoundError):
            HadoopCli().submit(make_job())
