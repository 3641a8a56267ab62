# src/streamjob/core/config.py
"""
Configuration schema and loading for streamjob runners.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.

Precedence, highest first:
1. Explicit overrides (command line flags)
2. STREAMJOB_* environment variables and the optional settings file
3. Conventional environment variables (GS_BUCKET, HADOOP_HOME, ...)
4. Defaults from the Pydantic schema
"""

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from streamjob.contracts.enums import Backend

# Conventional environment variables consulted when a value is not set
# anywhere else. Kept for compatibility with existing gcloud/hadoop setups.
_CLOUD_ENV_FALLBACKS: dict[str, str] = {
    "service_account": "GOOGLE_APPLICATION_CREDENTIALS",
    "region": "GS_REGION",
    "project": "GS_PROJECT",
    "cluster": "GS_CLUSTER",
    "bucket": "GS_BUCKET",
}

_HADOOP_ENV_FALLBACKS: dict[str, str] = {
    "hadoop_home": "HADOOP_HOME",
    "streaming_jar": "HADOOP_STREAMING_JAR",
}


class CloudSettings(BaseModel):
    """Dataproc and Google Storage settings.

    The cloud backend is enabled by configuring a service account. Once it
    is, every other field is required.
    """

    model_config = {"frozen": True}

    service_account: Path | None = Field(
        default=None,
        description="Service account JSON file (enables the Dataproc backend)",
    )
    project: str | None = Field(default=None, description="Google Cloud project ID")
    region: str | None = Field(default=None, description="Dataproc region")
    cluster: str | None = Field(default=None, description="Dataproc cluster name")
    bucket: str | None = Field(default=None, description="Google Storage bucket for job files")

    @model_validator(mode="after")
    def validate_complete_when_enabled(self) -> "CloudSettings":
        """All cloud fields are required once a service account is given."""
        if self.service_account is None:
            return self
        for field_name in ("project", "cluster", "region", "bucket"):
            if not getattr(self, field_name):
                raise ValueError(f"missing --{field_name}")
        return self

    @property
    def enabled(self) -> bool:
        return self.service_account is not None


class RunnerSettings(BaseModel):
    """Process level settings shared by every step of a run."""

    model_config = {"frozen": True}

    cloud: CloudSettings = Field(default_factory=CloudSettings)
    hadoop_home: Path | None = Field(default=None, description="Hadoop installation root")
    streaming_jar: Path | None = Field(
        default=None,
        description="Explicit hadoop streaming jar (skips the search under hadoop_home)",
    )
    python: str = Field(default="python3", description="Interpreter used to run the job script on workers")
    poll_interval_seconds: float = Field(default=2.0, gt=0, description="Dataproc status poll interval")
    poll_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Give up polling after this long (None polls until a terminal state)",
    )
    dataproc_streaming_jar: str = Field(
        default="file:///usr/lib/hadoop-mapreduce/hadoop-streaming.jar",
        description="Streaming jar URI on Dataproc cluster nodes",
    )

    @property
    def backend(self) -> Backend:
        return Backend.DATAPROC if self.cloud.enabled else Backend.HDFS


def _apply_env_fallbacks(config: dict[str, Any], fallbacks: dict[str, str]) -> dict[str, Any]:
    """Fill unset keys from conventional environment variables."""
    result = dict(config)
    for key, env_name in fallbacks.items():
        if result.get(key) in (None, ""):
            value = os.environ.get(env_name)
            if value:
                result[key] = value
    return result


def _drop_unset(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None and v != ""}


def load_settings(
    settings_file: Path | None = None,
    *,
    cloud_overrides: dict[str, Any] | None = None,
    **overrides: Any,
) -> RunnerSettings:
    """Load runner settings from file, environment and explicit overrides.

    Environment variable format: STREAMJOB_POLL_INTERVAL_SECONDS, and
    STREAMJOB_CLOUD__BUCKET for nested keys.

    Args:
        settings_file: Optional YAML/TOML settings file
        cloud_overrides: Explicit CloudSettings values (None values are ignored)
        **overrides: Explicit RunnerSettings values (None values are ignored)

    Returns:
        Validated RunnerSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If settings_file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if settings_file is not None and not settings_file.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_file}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="STREAMJOB",
        settings_files=[str(settings_file)] if settings_file is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    cloud_raw = raw_config.pop("cloud", None) or {}
    cloud_raw = {str(k).lower(): v for k, v in dict(cloud_raw).items()}
    cloud_raw.update(_drop_unset(cloud_overrides or {}))
    cloud_raw = _apply_env_fallbacks(cloud_raw, _CLOUD_ENV_FALLBACKS)

    raw_config.update(_drop_unset(overrides))
    raw_config = _apply_env_fallbacks(raw_config, _HADOOP_ENV_FALLBACKS)

    return RunnerSettings(cloud=CloudSettings(**cloud_raw), **raw_config)
