# tests/unit/contracts/test_enums.py
"""Tests for run mode resolution and job states."""

import pytest

from streamjob.contracts.enums import JobState, RunMode, Stage


class TestRunModeResolve:
    """RunMode.resolve() maps command line flags to exactly one mode."""

    @pytest.mark.parametrize(
        ("stage", "expected"),
        [
            (Stage.MAPPER, RunMode.WORKER_MAPPER),
            (Stage.COMBINER, RunMode.WORKER_COMBINER),
            (Stage.REDUCER, RunMode.WORKER_REDUCER),
        ],
    )
    def test_stage_selects_worker_mode(self, stage: Stage, expected: RunMode) -> None:
        assert RunMode.resolve(stage, submit_job=False) is expected

    def test_stage_wins_over_submit_job(self) -> None:
        """Workers are launched with the orchestrator's flags plus --stage."""
        assert RunMode.resolve(Stage.REDUCER, submit_job=True) is RunMode.WORKER_REDUCER

    def test_submit_job_selects_orchestrator(self) -> None:
        assert RunMode.resolve(None, submit_job=True) is RunMode.ORCHESTRATOR

    def test_no_flags_is_unconfigured(self) -> None:
        assert RunMode.resolve(None, submit_job=False) is RunMode.UNCONFIGURED

    def test_worker_modes_know_their_stage(self) -> None:
        assert RunMode.WORKER_MAPPER.is_worker
        assert RunMode.WORKER_MAPPER.stage is Stage.MAPPER
        assert RunMode.WORKER_COMBINER.stage is Stage.COMBINER
        assert not RunMode.ORCHESTRATOR.is_worker
        assert RunMode.ORCHESTRATOR.stage is None
        assert RunMode.UNCONFIGURED.stage is None


class TestJobState:
    @pytest.mark.parametrize("state", ["ATTEMPT_FAILURE", "ERROR", "DONE", "CANCELLED"])
    def test_terminal_states(self, state: str) -> None:
        assert JobState.is_terminal(state)

    @pytest.mark.parametrize("state", ["PENDING", "SETUP_DONE", "RUNNING", "CANCEL_PENDING", "SOMETHING_NEW", ""])
    def test_running_like_states_are_not_terminal(self, state: str) -> None:
        assert not JobState.is_terminal(state)

    def test_only_done_is_success(self) -> None:
        assert JobState.is_success("DONE")
        assert not JobState.is_success("CANCELLED")
        assert not JobState.is_success("ERROR")

    def test_stage_values_match_command_line(self) -> None:
        assert f"--stage={Stage.COMBINER}" == "--stage=combiner"
