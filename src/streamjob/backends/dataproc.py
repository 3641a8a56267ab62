# src/streamjob/backends/dataproc.py
"""Cloud backend: Dataproc jobs REST API.

submit() posts a Hadoop job that runs the streaming jar with the job's
arguments, then polls the job until it reaches a terminal state:

    submitted -> polling -> DONE | ERROR | ATTEMPT_FAILURE | CANCELLED

Polling runs on a fixed interval (2s by default). Every state change is
logged, and an unchanged state is logged again every 15th poll so an
operator can see the run is alive. Polling is unbounded unless a timeout
is configured; on timeout the remote job is abandoned, not cancelled.
"""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, stop_never, wait_fixed

from streamjob.backends.job import JobDescriptor
from streamjob.contracts.enums import JobState
from streamjob.contracts.errors import JobFailedError, JobTimeoutError, SubmissionError

logger = structlog.get_logger(__name__)

API_BASE = "https://dataproc.googleapis.com/v1"
DEFAULT_STREAMING_JAR = "file:///usr/lib/hadoop-mapreduce/hadoop-streaming.jar"
DEFAULT_POLL_INTERVAL_SECONDS = 2.0

# Log an unchanged state every Nth poll (~30s at the default interval)
LIVENESS_LOG_EVERY = 15

_JOB_ID_INVALID = re.compile(r"[^A-Za-z0-9_-]")
_JOB_ID_MAX = 100


def _state_of(resource: dict[str, Any]) -> str:
    status = resource.get("status") or {}
    return str(status.get("state") or JobState.STATE_UNSPECIFIED)


def make_job_id(name: str, suffix: str | None = None) -> str:
    """A Dataproc job id for name: letters, digits, ``_`` and ``-``, at most 100 chars.

    Job ids must be unique per project, so a random suffix is appended.
    """
    suffix = suffix if suffix is not None else uuid.uuid4().hex[:8]
    base = _JOB_ID_INVALID.sub("_", name)[: _JOB_ID_MAX - len(suffix) - 1]
    return f"{base}-{suffix}"


class DataprocSubmitter:
    """Submit streaming jobs to one Dataproc cluster and wait for them.

    Args:
        client: Authenticated httpx client
        project: Google Cloud project ID
        region: Dataproc region
        cluster: Target cluster name
        main_jar: Streaming jar URI on the cluster nodes
        poll_interval: Seconds between status requests
        poll_timeout: Give up after this many seconds; None polls until a terminal state
        sleep: Injectable for tests
    """

    def __init__(
        self,
        client: httpx.Client,
        *,
        project: str,
        region: str,
        cluster: str,
        main_jar: str = DEFAULT_STREAMING_JAR,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        poll_timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        api_base: str = API_BASE,
    ) -> None:
        self._client = client
        self._project = project
        self._region = region
        self._cluster = cluster
        self._main_jar = main_jar
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._sleep = sleep
        self._jobs_url = f"{api_base.rstrip('/')}/projects/{quote(project, safe='')}/regions/{quote(region, safe='')}/jobs"

    def build_request(self, job: JobDescriptor, job_id: str) -> dict[str, Any]:
        """The jobs:submit request body."""
        hadoop_job: dict[str, Any] = {
            "args": job.jar_args(),
            "mainJarFileUri": self._main_jar,
            "properties": job.job_properties(),
        }
        if job.cache_files:
            hadoop_job["fileUris"] = list(job.cache_files)
        return {
            "job": {
                "placement": {"clusterName": self._cluster},
                "reference": {"jobId": job_id},
                "hadoopJob": hadoop_job,
            }
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise SubmissionError(f"{method} {url} failed: {e}") from e
        if response.status_code != 200:
            logger.error("dataproc request failed", method=method, url=url, body=response.text[:2000])
            raise SubmissionError(
                f"got status code {response.status_code} from {method} {url}",
                status_code=response.status_code,
            )
        payload: dict[str, Any] = response.json()
        return payload

    def submit(self, job: JobDescriptor) -> None:
        """Submit job and block until it finishes.

        Raises:
            SubmissionError: On a non-200 response to submit or a status request
            JobFailedError: If the job ends in any terminal state except DONE
            JobTimeoutError: If poll_timeout elapses first
        """
        job_id = make_job_id(job.name)
        body = self.build_request(job, job_id)
        logger.info(
            "submitting dataproc job",
            job_id=job_id,
            cluster=self._cluster,
            args=body["job"]["hadoopJob"]["args"],
            properties=body["job"]["hadoopJob"]["properties"],
        )
        resource = self._request("POST", f"{self._jobs_url}:submit", json=body)
        job_id = resource.get("reference", {}).get("jobId", job_id)
        state = _state_of(resource)
        logger.info("dataproc job status", job_id=job_id, state=state)

        resource = self.wait(job_id, state)
        state = _state_of(resource)
        if not JobState.is_success(state):
            details = (resource.get("status") or {}).get("details")
            raise JobFailedError(job_id, state, details)

    def wait(self, job_id: str, state: str = JobState.STATE_UNSPECIFIED) -> dict[str, Any]:
        """Poll job_id until it reaches a terminal state and return the final job resource."""
        url = f"{self._jobs_url}/{quote(job_id, safe='')}"
        polls = 0
        last_state = state

        def poll() -> dict[str, Any]:
            nonlocal polls, last_state
            polls += 1
            resource = self._request("GET", url)
            current = _state_of(resource)
            if current != last_state or polls % LIVENESS_LOG_EVERY == 0:
                last_state = current
                logger.info("dataproc job status", job_id=job_id, state=current, polls=polls)
            return resource

        stop = stop_never if self._poll_timeout is None else stop_after_delay(self._poll_timeout)
        retrying = Retrying(
            retry=retry_if_result(lambda resource: not JobState.is_terminal(_state_of(resource))),
            wait=wait_fixed(self._poll_interval),
            stop=stop,
            sleep=self._sleep,
        )

        # First status request comes one interval after submission
        self._sleep(self._poll_interval)
        try:
            return retrying(poll)
        except RetryError as e:
            raise JobTimeoutError(job_id, last_state, self._poll_timeout or 0.0) from e
