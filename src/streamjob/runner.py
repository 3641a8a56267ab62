# src/streamjob/runner.py
"""Runner: the job definition and both of its run modes.

The same job script is the orchestrator on the operator's machine and
the worker on every cluster node:

    python wordcount.py --submit-job ...        # orchestrator
    python3 streamjob_job.py --step=0 --stage=mapper   # worker, started by the engine

The mode is resolved once from the command line (RunMode.resolve) and
each mode has its own code path:

- Worker: run one stage of one step over stdin/stdout, report CPU time
  counters, return exit code 0 or 1.
- Orchestrator: create a timestamped working path, ship the job script
  (and, on Dataproc, the local files), start the log relay, then submit
  every step in order, stopping at the first failure.
- Unconfigured: ConfigurationError, nothing is done.

Step chaining is strictly linear:

    step 0 input  = Runner inputs
    step i input  = <tmp>/step_<i-1>/output/part-*
    step i output = <tmp>/step_<i>/output     (more than one step)
    last output   = Runner output, else <tmp>/output
"""

from __future__ import annotations

import getpass
import shutil
import socket
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO

import httpx
import structlog

from streamjob.backends.credentials import client_from_service_account
from streamjob.backends.dataproc import DataprocSubmitter
from streamjob.backends.hdfs import HadoopCli
from streamjob.backends.job import (
    COMPRESSION_PROPERTIES,
    DEFAULT_PROTO,
    DEFAULT_REDUCER_TASKS,
    JobDescriptor,
    Submitter,
    absolute_path,
)
from streamjob.backends.storage import StorageClient
from streamjob.contracts.enums import Backend, RunMode, Stage
from streamjob.contracts.errors import ConfigurationError, FsCommandError, InfrastructureError
from streamjob.core.config import RunnerSettings
from streamjob.core.logging import configure_logging
from streamjob.remote_logging import LogRelay, PrefixWriter, dial_remote_logger, worker_prefix
from streamjob.reporter import Reporter, get_reporter
from streamjob.step import StepCapabilities

logger = structlog.get_logger(__name__)

# Name the job script is shipped under, in the workers' working directory
JOB_SCRIPT_NAME = "streamjob_job.py"

COUNTER_GROUP = "streamjob"


def _username() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return ""


def make_tmp_path(name: str, now: datetime) -> str:
    """``user/<username>/tmp/<name>.<YYYYmmdd-HHMMSS>``, relative to the filesystem root."""
    return f"user/{_username()}/tmp/{name}.{now:%Y%m%d-%H%M%S}"


@dataclass
class RunnerState:
    """Per-run values derived from the Runner and its settings.

    Rebuilt at the start of every orchestration so each run gets a fresh
    working path. Staging the job files appends to cache_files and may
    clear files.
    """

    backend: Backend
    tmp_path: str
    default_proto: str
    cache_files: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)


class Runner:
    """A named, linear sequence of steps and where they read and write.

    Args:
        name: Job name; also names each submitted job and the working path
        steps: Step objects, each with at least a ``reducer`` method
        inputs: Input paths or globs for step 0 (``/path``, ``hdfs:///path``, ``gs://bucket/path``)
        output: Final output path; defaults to ``<tmp>/output``
        reducer_tasks: Reducer tasks per step, unless a step overrides it
        passthrough_options: Extra arguments for the job script on workers
        compress_output: Gzip the output of every step
        cache_files: Distributed files (``-files``)
        files: Local files shipped with ``-file``
        properties: ``-D key=value`` properties; override the defaults
        jar_options: Extra streaming jar arguments
        job_script: The script uploaded for workers; defaults to sys.argv[0]
        settings: Backend settings; usually supplied at run() time by the CLI
    """

    def __init__(
        self,
        name: str,
        steps: Sequence[Any],
        *,
        inputs: Sequence[str] = (),
        output: str | None = None,
        reducer_tasks: int = DEFAULT_REDUCER_TASKS,
        passthrough_options: Sequence[str] = (),
        compress_output: bool = False,
        cache_files: Sequence[str] = (),
        files: Sequence[str] = (),
        properties: dict[str, str] | None = None,
        jar_options: Sequence[str] = (),
        job_script: Path | None = None,
        settings: RunnerSettings | None = None,
        reporter: Reporter | None = None,
        hadoop: HadoopCli | None = None,
        http_client: httpx.Client | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not steps:
            raise ConfigurationError(f"runner {name!r} has no steps")
        self.name = name
        self.steps = list(steps)
        self.inputs = list(inputs)
        self.output = output
        self.reducer_tasks = reducer_tasks
        self.passthrough_options = list(passthrough_options)
        self.compress_output = compress_output
        self.cache_files = list(cache_files)
        self.files = list(files)
        self.properties = dict(properties or {})
        self.jar_options = list(jar_options)
        self.job_script = job_script
        self._settings = settings or RunnerSettings()
        self._reporter = reporter or get_reporter()
        self._hadoop = hadoop
        self._http_client = http_client
        self._clock = clock
        self._submitter: Submitter | None = None
        self._storage: StorageClient | None = None
        self.state = self._new_state()

    @property
    def settings(self) -> RunnerSettings:
        return self._settings

    @property
    def tmp_path(self) -> str:
        return self.state.tmp_path

    def configure(self, settings: RunnerSettings) -> None:
        """Replace the settings and start a fresh RunnerState."""
        self._settings = settings
        self._submitter = None
        self._storage = None
        self.state = self._new_state()

    def _new_state(self) -> RunnerState:
        backend = self._settings.backend
        if backend == Backend.DATAPROC:
            default_proto = f"gs://{self._settings.cloud.bucket}/"
        else:
            default_proto = DEFAULT_PROTO
        return RunnerState(
            backend=backend,
            tmp_path=make_tmp_path(self.name, self._clock()),
            default_proto=default_proto,
            cache_files=list(self.cache_files),
            files=list(self.files),
        )

    # === Entry point ===

    def run(
        self,
        *,
        stage: Stage | None = None,
        step: int = 0,
        submit_job: bool = False,
        remote_logger: str | None = None,
        settings: RunnerSettings | None = None,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        log_level: str = "INFO",
        json_logs: bool = False,
    ) -> int:
        """Resolve the run mode and execute it.

        Returns:
            Process exit code (worker: 0 or 1; orchestrator: 0)

        Raises:
            ConfigurationError: If --step is out of range, neither a stage nor
                --submit-job was given, or the combiner stage is requested for a
                step without one
            InfrastructureError: If an orchestrated step fails
        """
        if not 0 <= step < len(self.steps):
            raise ConfigurationError(f"invalid --step={step} (max {len(self.steps) - 1})")
        if settings is not None:
            self.configure(settings)

        mode = RunMode.resolve(stage, submit_job)
        if remote_logger:
            self._connect_remote_logger(remote_logger, mode.stage, step, log_level=log_level, json_logs=json_logs)

        if mode.is_worker and stage is not None:
            return self.run_worker(stage, step, stdin=stdin, stdout=stdout)
        if mode == RunMode.ORCHESTRATOR:
            self.orchestrate()
            return 0
        raise ConfigurationError("missing --submit-job")

    def _connect_remote_logger(
        self,
        address: str,
        stage: Stage | None,
        step: int,
        *,
        log_level: str,
        json_logs: bool,
    ) -> None:
        try:
            target = dial_remote_logger(address)
        except OSError as e:
            if stage is None:
                self._reporter.status(f"error dialing remote logger {e}")
            else:
                logger.warning("failed connecting to remote logger", address=address, error=str(e))
            return
        prefix = worker_prefix(socket.gethostname(), stage or "", step)
        configure_logging(json_output=json_logs, level=log_level, stream=PrefixWriter(prefix, target))

    # === Worker mode ===

    def run_worker(
        self,
        stage: Stage,
        step: int,
        *,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
    ) -> int:
        """Run one stage of one step over stdin/stdout.

        Returns:
            0 on success, 1 if the stage raised

        Raises:
            ConfigurationError: If the step is not a step, or has no combiner for the combiner stage
        """
        stage_function = StepCapabilities.of(self.steps[step]).for_stage(stage)
        stdin = stdin if stdin is not None else sys.stdin.buffer
        stdout = stdout if stdout is not None else sys.stdout.buffer

        logger.info("starting stage", stage=str(stage), step=step)
        failed = False
        try:
            stage_function(stdin, stdout)
            stdout.flush()
        except Exception:
            logger.exception("stage failed", stage=str(stage), step=step)
            failed = True
        self._reporter.audit_cpu_time(COUNTER_GROUP, f"{stage}[{step}]")
        return 1 if failed else 0

    # === Orchestrator mode ===

    def task_command(self, stage: Stage, step: int, logger_address: str | None = None) -> str:
        """Command line the engine runs for one stage of one step."""
        parts = [self._settings.python, JOB_SCRIPT_NAME, *self.passthrough_options]
        if logger_address:
            parts.append(f"--remote-logger={logger_address}")
        parts.extend([f"--step={step}", f"--stage={stage}"])
        return " ".join(parts)

    def step_name(self, step: int) -> str:
        if len(self.steps) == 1:
            return self.name
        return f"{self.name}-step_{step}"

    def step_output(self, step: int) -> str:
        tmp = self.state.tmp_path
        if step == len(self.steps) - 1:
            return self.output or f"{tmp}/output"
        return f"{tmp}/step_{step}/output"

    def step_inputs(self, step: int) -> list[str]:
        if step == 0:
            return list(self.inputs)
        return [f"{self.state.tmp_path}/step_{step - 1}/output/part-*"]

    def build_job(self, step: int, logger_address: str | None = None) -> JobDescriptor:
        """The JobDescriptor for one step. Reads the RunnerState, changes nothing.

        Raises:
            ConfigurationError: If step is out of range, there are no inputs, or the step has no reducer
        """
        if not 0 <= step < len(self.steps):
            raise ConfigurationError(f"step {step} out of range")
        if not self.inputs:
            raise ConfigurationError(f"runner {self.name!r} has no input files")
        capabilities = StepCapabilities.of(self.steps[step])

        properties = dict(COMPRESSION_PROPERTIES) if self.compress_output else {}
        properties.update(self.properties)

        reducer_tasks = capabilities.reducer_tasks
        if reducer_tasks is None:
            reducer_tasks = self.reducer_tasks

        return JobDescriptor(
            name=self.step_name(step),
            inputs=tuple(self.step_inputs(step)),
            output=self.step_output(step),
            mapper=self.task_command(Stage.MAPPER, step, logger_address),
            reducer=self.task_command(Stage.REDUCER, step, logger_address),
            combiner=self.task_command(Stage.COMBINER, step, logger_address) if capabilities.has_combiner else None,
            reducer_tasks=reducer_tasks,
            options=tuple(self.jar_options),
            files=tuple(self.state.files),
            cache_files=tuple(self.state.cache_files),
            properties=properties,
            default_proto=self.state.default_proto,
        )

    def _hadoop_cli(self) -> HadoopCli:
        if self._hadoop is None:
            self._hadoop = HadoopCli(self._settings.hadoop_home, self._settings.streaming_jar)
        return self._hadoop

    def _cloud_client(self) -> httpx.Client:
        if self._http_client is None:
            service_account = self._settings.cloud.service_account
            if service_account is None:
                raise ConfigurationError("missing --service-account")
            self._http_client = client_from_service_account(service_account)
        return self._http_client

    def _storage_client(self) -> StorageClient:
        if self._storage is None:
            self._storage = StorageClient(self._cloud_client(), str(self._settings.cloud.bucket))
        return self._storage

    def submitter(self) -> Submitter:
        if self._submitter is None:
            if self.state.backend == Backend.DATAPROC:
                cloud = self._settings.cloud
                self._submitter = DataprocSubmitter(
                    self._cloud_client(),
                    project=str(cloud.project),
                    region=str(cloud.region),
                    cluster=str(cloud.cluster),
                    main_jar=self._settings.dataproc_streaming_jar,
                    poll_interval=self._settings.poll_interval_seconds,
                    poll_timeout=self._settings.poll_timeout_seconds,
                )
            else:
                self._submitter = self._hadoop_cli()
        return self._submitter

    def _local_job_script(self) -> Path:
        script = self.job_script if self.job_script is not None else Path(sys.argv[0])
        script = script.resolve()
        if not script.is_file():
            raise ConfigurationError(f"job script {script} not found")
        return script

    def stage_job_files(self) -> None:
        """Ship the job script, and on Dataproc the local files, to the working path."""
        script = self._local_job_script()
        state = self.state
        target = f"{state.tmp_path}/{JOB_SCRIPT_NAME}"

        if state.backend == Backend.DATAPROC:
            storage = self._storage_client()
            self._upload(storage, script, target)
            # -file names a local path on the submitting host, which Dataproc
            # does not have; ship those through the bucket instead
            for local in state.files:
                self._upload(storage, Path(local), f"{state.tmp_path}/{Path(local).name}")
            state.files = []
            return

        hadoop = self._hadoop_cli()
        hadoop.mkdir(state.default_proto + state.tmp_path)
        hadoop.put(str(script), state.default_proto + target)
        state.cache_files.append(f"{state.default_proto}{target}#{JOB_SCRIPT_NAME}")

    def _upload(self, storage: StorageClient, local: Path, name: str) -> None:
        logger.info("uploading job file", source=str(local), target=storage.uri(name))
        try:
            with local.open("rb") as f:
                storage.insert(name, f)
        except OSError as e:
            raise InfrastructureError(f"failed reading {local}: {e}") from e
        self.state.cache_files.append(storage.uri(name))

    def orchestrate(self) -> None:
        """Ship the job files and run every step in order.

        Raises:
            InfrastructureError: From the first step that fails; later steps are not submitted
        """
        self.state = self._new_state()
        logger.info(
            "starting run",
            name=self.name,
            backend=str(self.state.backend),
            steps=len(self.steps),
            tmp_path=self.state.tmp_path,
        )
        self.stage_job_files()
        submitter = self.submitter()

        with LogRelay() as relay:
            for step in range(len(self.steps)):
                job = self.build_job(step, relay.address)
                try:
                    submitter.submit(job)
                except InfrastructureError as e:
                    e.add_note(f"failed running step {step} ({job.name})")
                    logger.error("step failed", step=step, job=job.name, error=str(e))
                    raise
                logger.info("step finished", step=step, job=job.name)

    # === After a run ===

    def final_output(self) -> str:
        return absolute_path(self.step_output(len(self.steps) - 1), self.state.default_proto)

    def cleanup(self) -> None:
        """Remove the run's working path."""
        if self.state.backend == Backend.DATAPROC:
            deleted = self._storage_client().delete_prefix(self.state.tmp_path)
            logger.info("removed working path", tmp_path=self.state.tmp_path, objects=deleted)
        else:
            self._hadoop_cli().rmr(self.state.default_proto + self.state.tmp_path)

    def cat_output(self, writer: BinaryIO) -> None:
        """Stream the final output part files to writer.

        Raises:
            ConfigurationError: On the Dataproc backend
            FsCommandError: If ``hadoop fs -cat`` fails
        """
        if self.state.backend != Backend.HDFS:
            raise ConfigurationError("cat_output requires the hdfs backend")
        proc = self._hadoop_cli().cat(f"{self.final_output()}/part-*")
        with proc:
            if proc.stdout is not None:
                shutil.copyfileobj(proc.stdout, writer)
        writer.flush()
        if proc.returncode != 0:
            raise FsCommandError(list(proc.args), proc.returncode)
