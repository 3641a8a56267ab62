"""Status codes, stages and modes used across subsystem boundaries."""

from enum import StrEnum


class Stage(StrEnum):
    """Worker stage selected by ``--stage`` on a remote invocation."""

    MAPPER = "mapper"
    COMBINER = "combiner"
    REDUCER = "reducer"


class RunMode(StrEnum):
    """What this process invocation does.

    Resolved once at startup from the command line. Each mode maps to a
    distinct code path in the Runner:

    - UNCONFIGURED: neither ``--stage`` nor ``--submit-job`` was given
    - WORKER_*: execute one capability of one step against stdin/stdout
    - ORCHESTRATOR: upload the job script and submit every step
    """

    UNCONFIGURED = "unconfigured"
    WORKER_MAPPER = "worker_mapper"
    WORKER_COMBINER = "worker_combiner"
    WORKER_REDUCER = "worker_reducer"
    ORCHESTRATOR = "orchestrator"

    @classmethod
    def resolve(cls, stage: Stage | None, submit_job: bool) -> "RunMode":
        """Resolve the run mode. A stage selector always wins over ``--submit-job``."""
        if stage is not None:
            return _WORKER_MODES[stage]
        if submit_job:
            return cls.ORCHESTRATOR
        return cls.UNCONFIGURED

    @property
    def is_worker(self) -> bool:
        return self in _WORKER_MODES.values()

    @property
    def stage(self) -> Stage | None:
        """The worker stage for worker modes, None otherwise."""
        for stage, mode in _WORKER_MODES.items():
            if mode is self:
                return stage
        return None


_WORKER_MODES: dict[Stage, RunMode] = {
    Stage.MAPPER: RunMode.WORKER_MAPPER,
    Stage.COMBINER: RunMode.WORKER_COMBINER,
    Stage.REDUCER: RunMode.WORKER_REDUCER,
}


class Backend(StrEnum):
    """Execution strategy used to run submitted steps."""

    HDFS = "hdfs"
    DATAPROC = "dataproc"


class JobState(StrEnum):
    """Dataproc job states.

    Values mirror the ``status.state`` field of the Dataproc jobs API.
    Anything not listed here is treated as a non-terminal, running-like state.
    """

    STATE_UNSPECIFIED = "STATE_UNSPECIFIED"
    PENDING = "PENDING"
    SETUP_DONE = "SETUP_DONE"
    RUNNING = "RUNNING"
    CANCEL_PENDING = "CANCEL_PENDING"
    CANCEL_STARTED = "CANCEL_STARTED"
    CANCELLED = "CANCELLED"
    DONE = "DONE"
    ERROR = "ERROR"
    ATTEMPT_FAILURE = "ATTEMPT_FAILURE"

    @classmethod
    def is_terminal(cls, state: str) -> bool:
        """Whether no further transition can occur from ``state``."""
        return state in _TERMINAL_STATES

    @classmethod
    def is_success(cls, state: str) -> bool:
        return state == cls.DONE


_TERMINAL_STATES = frozenset({JobState.ATTEMPT_FAILURE, JobState.ERROR, JobState.DONE, JobState.CANCELLED})
