# tests/unit/core/test_config.py
"""Tests for settings loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from streamjob.contracts.enums import Backend
from streamjob.core.config import CloudSettings, RunnerSettings, load_settings


class TestCloudSettings:
    def test_disabled_without_service_account(self) -> None:
        settings = CloudSettings(project="p")
        assert not settings.enabled

    def test_service_account_requires_every_field(self) -> None:
        with pytest.raises(ValidationError, match="missing --cluster"):
            CloudSettings(service_account=Path("sa.json"), project="p", region="r", bucket="b")

    def test_complete_settings_enable_dataproc(self) -> None:
        cloud = CloudSettings(service_account=Path("sa.json"), project="p", region="r", cluster="c", bucket="b")
        assert cloud.enabled
        assert RunnerSettings(cloud=cloud).backend is Backend.DATAPROC

    def test_settings_are_frozen(self) -> None:
        settings = RunnerSettings()
        with pytest.raises(ValidationError):
            settings.python = "python2"  # type: ignore[misc]


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings()
        assert settings.backend is Backend.HDFS
        assert settings.poll_interval_seconds == 2.0
        assert settings.poll_timeout_seconds is None
        assert settings.python == "python3"

    def test_conventional_env_fallbacks(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/keys/sa.json")
        monkeypatch.setenv("GS_PROJECT", "proj")
        monkeypatch.setenv("GS_REGION", "us-east1")
        monkeypatch.setenv("GS_CLUSTER", "cluster-1")
        monkeypatch.setenv("GS_BUCKET", "my-bucket")
        monkeypatch.setenv("HADOOP_HOME", "/opt/hadoop")

        settings = load_settings()

        assert settings.backend is Backend.DATAPROC
        assert settings.cloud.service_account == Path("/keys/sa.json")
        assert settings.cloud.bucket == "my-bucket"
        assert settings.hadoop_home == Path("/opt/hadoop")

    def test_explicit_overrides_win_over_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GS_BUCKET", "env-bucket")

        settings = load_settings(cloud_overrides={"bucket": "flag-bucket", "project": None})

        assert settings.cloud.bucket == "flag-bucket"
        assert settings.cloud.project is None

    def test_prefixed_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STREAMJOB_POLL_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("STREAMJOB_PYTHON", "/usr/bin/python3.12")

        settings = load_settings()

        assert settings.poll_interval_seconds == 5.0
        assert settings.python == "/usr/bin/python3.12"

    def test_incomplete_cloud_env_is_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/keys/sa.json")
        monkeypatch.setenv("GS_PROJECT", "proj")

        with pytest.raises(ValidationError, match="missing --region"):
            load_settings()

    def test_settings_file(self, tmp_path: Path) -> None:
        settings_file = tmp_path / "settings.yaml"
        settings_file.write_text("poll_timeout_seconds: 600\ncloud:\n  region: europe-west1\n")

        settings = load_settings(settings_file)

        assert settings.poll_timeout_seconds == 600
        assert settings.cloud.region == "europe-west1"

    def test_missing_settings_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml")
